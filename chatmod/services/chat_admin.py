"""
Admin-side chat tools: message search, history export and live dashboard
counters over the stored messages.
"""

import inspect
import logging
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Optional

from chatmod.lib.errors import ChatModError
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import MS_PER_HOUR, iso_utc, now_ms
from chatmod.models.analytics import (
    ChatHistoryExport, ExportedMessage, LiveChatStats, RecentChatStats, UserMessageCount,
)
from chatmod.models.message import Message
from chatmod.services.heuristics import normalize_text
from chatmod.services.snapshot import MESSAGES_PATH, load_messages, parse_messages

logger = logging.getLogger(__name__)


class ChatAdmin:
    """Read-only views over messages/ for moderators and admins."""

    TOP_USERS = 10
    RECENT_SAMPLE = 100

    def __init__(self, store: RecordStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    async def search_messages(self, keywords: Iterable[str]) -> List[Message]:
        """Messages containing any keyword as a case-insensitive substring, oldest first."""
        needles = [normalize_text(k) for k in keywords if k and k.strip()]
        if not needles:
            return []
        return [
            m for m in await load_messages(self.store)
            if any(needle in normalize_text(m.text) for needle in needles)
        ]

    async def get_messages_by_user(self, user_id: str) -> List[Message]:
        return [m for m in await load_messages(self.store) if m.author_id == user_id]

    async def export_chat_history(self) -> ChatHistoryExport:
        messages = await load_messages(self.store)
        return ChatHistoryExport(
            exported_at=iso_utc(self.clock()),
            total_messages=len(messages),
            messages=[
                ExportedMessage(
                    timestamp=iso_utc(m.timestamp_ms),
                    author_id=m.author_id,
                    author_display_name=m.author_display_name,
                    text=m.text,
                )
                for m in messages
            ],
        )

    def calculate_stats(self, messages: List[Message], now: Optional[int] = None) -> LiveChatStats:
        now = now if now is not None else self.clock()
        hour_ago = now - MS_PER_HOUR

        counts = Counter(m.author_id for m in messages)
        names: Dict[str, str] = {m.author_id: m.author_display_name for m in messages}
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:self.TOP_USERS]

        return LiveChatStats(
            total_messages=len(messages),
            active_users=len(counts),
            messages_last_hour=sum(1 for m in messages if m.timestamp_ms > hour_ago),
            top_users=[
                UserMessageCount(user_id=uid, display_name=names[uid], message_count=count)
                for uid, count in ranked
            ],
        )

    async def get_live_stats(self) -> LiveChatStats:
        return self.calculate_stats(await load_messages(self.store))

    async def monitor_chat_stats(self, callback: Callable[[LiveChatStats], Any]) -> Callable[[], None]:
        """Recompute the dashboard counters on every message change. Errors are logged."""
        async def on_change(data):
            try:
                result = callback(self.calculate_stats(parse_messages(data if isinstance(data, dict) else {})))
                if inspect.isawaitable(result):
                    await result
            except ChatModError as e:
                logger.error(f"Error monitoring chat stats: {e}")

        return await self.store.subscribe(MESSAGES_PATH, on_change)

    async def get_chat_stats(self, sample_size: int = RECENT_SAMPLE) -> RecentChatStats:
        """Message and distinct-author counts over the latest sample_size messages."""
        recent = (await load_messages(self.store))[-sample_size:] if sample_size > 0 else []
        return RecentChatStats(
            message_count=len(recent),
            unique_users=len({m.author_id for m in recent}),
            timestamp_ms=self.clock(),
        )
