"""
Flag store adapter.
Creates, reviews and queries flagged-message records under flaggedMessages/{id}.
"""

import inspect
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from chatmod.lib.errors import ConflictError, InvalidArgument, NotFoundError
from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import now_ms
from chatmod.models.enums import FlagReason, ReviewAction, Severity
from chatmod.models.message import FlaggedMessage, FlagStats, Message
from chatmod.services.reconciler import IntentLog

logger = logging.getLogger(__name__)

REVIEW_DELETE_OP = "review_delete"


class FlagStore:
    """
    Flagged-message records keyed by message id.
    Re-flagging keeps the most severe flag; reviewed flags are never reopened.
    """

    PATH = "flaggedMessages"
    MESSAGES_PATH = "messages"

    def __init__(self, store: RecordStore, intent_log: IntentLog, clock: Callable[[], int] = now_ms):
        self.store = store
        self.intent_log = intent_log
        self.clock = clock

    async def flag_message(
        self,
        message: Message,
        flag_reason: FlagReason,
        severity: Severity,
        flagged_by_user_id: Optional[str] = None,
        auto_flagged: bool = True,
    ) -> FlaggedMessage:
        """
        Write a flag for message and return the record that is now stored.
        An unreviewed flag is only replaced by a strictly more severe one.
        """
        if not auto_flagged and not flagged_by_user_id:
            raise InvalidArgument("manual flags require flagged_by_user_id")

        severity = Severity(severity)
        existing = await self.get_flagged(message.id)
        if existing is not None:
            if existing.reviewed:
                logger.info(f"Message {message.id} already reviewed, keeping existing flag")
                return existing
            if severity.rank <= existing.severity.rank:
                return existing

        flagged = FlaggedMessage.from_message(
            message,
            flag_reason=FlagReason(flag_reason),
            severity=severity,
            flagged_at_ms=self.clock(),
            flagged_by_user_id=flagged_by_user_id,
            auto_flagged=auto_flagged,
        )
        await self.store.write(self._path(message.id), flagged.model_dump(mode="json"))
        MetricsExporter.record_flag(flagged.flag_reason.value, flagged.severity.value, auto_flagged)
        logger.info(
            f"Flagged message {message.id}: {flagged.flag_reason.value}/{flagged.severity.value} "
            f"({'auto' if auto_flagged else flagged_by_user_id})"
        )
        return flagged

    async def review_flagged_message(
        self,
        message_id: str,
        reviewer_id: str,
        action: ReviewAction,
    ) -> FlaggedMessage:
        """Resolve a flag exactly once; 'deleted' also removes the message."""
        action = ReviewAction(action)
        existing = await self.get_flagged(message_id)
        if existing is None:
            raise NotFoundError(f"No flagged message {message_id}")
        if existing.reviewed:
            raise ConflictError(f"Flagged message {message_id} was already reviewed")

        reviewed = existing.model_copy(update={
            "reviewed": True,
            "reviewed_by_user_id": reviewer_id,
            "reviewed_at_ms": self.clock(),
            "resolution_action": action,
        })
        record = reviewed.model_dump(mode="json")

        if action == ReviewAction.DELETED:
            await self.intent_log.run(
                REVIEW_DELETE_OP,
                {"message_id": message_id, "flag": record},
                self.apply_review_delete,
            )
        else:
            await self.store.write(self._path(message_id), record)

        MetricsExporter.record_review(action.value)
        logger.info(f"Flag {message_id} reviewed by {reviewer_id}: {action.value}")
        return reviewed

    async def apply_review_delete(self, payload: Dict[str, Any]) -> None:
        """Write the reviewed flag, then remove the message. Safe to replay."""
        message_id = payload["message_id"]
        await self.store.write(self._path(message_id), payload["flag"])
        await self.delete_message(message_id)

    async def delete_message(self, message_id: str) -> None:
        await self.store.delete(f"{self.MESSAGES_PATH}/{message_id}")

    async def get_flagged(self, message_id: str) -> Optional[FlaggedMessage]:
        data = await self.store.read(self._path(message_id))
        if not data:
            return None
        return FlaggedMessage(**{**data, "id": message_id})

    async def list_flagged(
        self,
        reviewed: Optional[bool] = None,
        severity: Optional[Severity] = None,
        reason: Optional[FlagReason] = None,
    ) -> List[FlaggedMessage]:
        """Flagged messages, most recent first, optionally filtered."""
        flagged = self.parse_all(await self.store.read_children(self.PATH))
        if reviewed is not None:
            flagged = [f for f in flagged if f.reviewed == reviewed]
        if severity is not None:
            flagged = [f for f in flagged if f.severity == Severity(severity)]
        if reason is not None:
            flagged = [f for f in flagged if f.flag_reason == FlagReason(reason)]
        return flagged

    async def monitor_flagged(self, callback: Callable[[List[FlaggedMessage]], Any]) -> Callable[[], None]:
        """Deliver the full flag list (most recent first) now and on every change."""
        async def on_change(data):
            result = callback(self.parse_all(data if isinstance(data, dict) else {}))
            if inspect.isawaitable(result):
                await result

        return await self.store.subscribe(self.PATH, on_change)

    @staticmethod
    def parse_all(data: Dict[str, Any]) -> List[FlaggedMessage]:
        flagged = []
        for message_id, item in data.items():
            try:
                flagged.append(FlaggedMessage(**{**item, "id": message_id}))
            except ValueError as e:
                logger.warning(f"Skipping malformed flag {message_id}: {e}")
        flagged.sort(key=lambda f: f.flagged_at_ms, reverse=True)
        return flagged

    @staticmethod
    def get_by_severity(flagged: Iterable[FlaggedMessage], severity: Severity) -> List[FlaggedMessage]:
        return [f for f in flagged if f.severity == Severity(severity) and not f.reviewed]

    @staticmethod
    def get_by_reason(flagged: Iterable[FlaggedMessage], reason: FlagReason) -> List[FlaggedMessage]:
        return [f for f in flagged if f.flag_reason == FlagReason(reason) and not f.reviewed]

    @staticmethod
    def stats(flagged: Iterable[FlaggedMessage]) -> FlagStats:
        flagged = list(flagged)
        unreviewed = [f for f in flagged if not f.reviewed]
        return FlagStats(
            total=len(flagged),
            reviewed=len(flagged) - len(unreviewed),
            unreviewed=len(unreviewed),
            by_severity={s: sum(1 for f in unreviewed if f.severity == s) for s in Severity},
            by_reason={r: sum(1 for f in unreviewed if f.flag_reason == r) for r in FlagReason},
            auto_flagged=sum(1 for f in unreviewed if f.auto_flagged),
            manual_flagged=sum(1 for f in unreviewed if not f.auto_flagged),
        )

    def _path(self, message_id: str) -> str:
        return f"{self.PATH}/{message_id}"
