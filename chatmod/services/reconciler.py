"""
Intent log and reconciler for multi-key operations.
Ban, unban and review+delete each touch two records. An intent is written
under pendingOps/ first and removed after the last write, so an interrupted
operation can be replayed. Every handler must be idempotent.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from chatmod.lib.errors import ChatModError
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import now_ms
from chatmod.models.operation import PendingOperation

logger = logging.getLogger(__name__)

OpHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class IntentLog:
    """Two-phase intent records under pendingOps/."""

    PATH = "pendingOps"

    def __init__(self, store: RecordStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    async def begin(self, op: str, payload: Dict[str, Any]) -> str:
        op_id = await self.store.append(self.PATH)
        record = PendingOperation(id=op_id, op=op, payload=payload, created_at_ms=self.clock())
        await self.store.write(f"{self.PATH}/{op_id}", record.model_dump(mode="json"))
        return op_id

    async def complete(self, op_id: str) -> None:
        await self.store.delete(f"{self.PATH}/{op_id}")

    async def run(self, op: str, payload: Dict[str, Any], handler: OpHandler) -> None:
        """Record the intent, apply it, then clear it. A failure leaves the intent for replay."""
        op_id = await self.begin(op, payload)
        await handler(payload)
        await self.complete(op_id)

    async def pending(self) -> List[PendingOperation]:
        records = []
        for op_id, data in (await self.store.read_children(self.PATH)).items():
            try:
                records.append(PendingOperation(**{**data, "id": op_id}))
            except ValueError as e:
                logger.warning(f"Skipping malformed pending operation {op_id}: {e}")
        return sorted(records, key=lambda r: r.created_at_ms)


class Reconciler:
    """Replays pending operations left behind by an interrupted writer."""

    def __init__(self, intent_log: IntentLog, handlers: Optional[Dict[str, OpHandler]] = None):
        self.intent_log = intent_log
        self.handlers: Dict[str, OpHandler] = dict(handlers or {})

    def register(self, op: str, handler: OpHandler) -> None:
        self.handlers[op] = handler

    async def reconcile(self) -> int:
        """Replay every pending operation; returns how many completed."""
        completed = 0
        for record in await self.intent_log.pending():
            handler = self.handlers.get(record.op)
            if handler is None:
                logger.warning(f"No handler for pending operation {record.op} ({record.id})")
                continue
            try:
                await handler(record.payload)
            except ChatModError as e:
                logger.error(f"Replay of {record.op} ({record.id}) failed: {e}")
                continue
            await self.intent_log.complete(record.id)
            completed += 1
            logger.info(f"Reconciled pending {record.op} operation {record.id}")
        return completed
