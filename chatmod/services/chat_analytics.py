"""
System-wide chat analytics.
Volume, activity, sentiment, moderation funnel, top users, word cloud and
per-channel counts over a window of recent messages.
"""

import inspect
import logging
from collections import Counter, defaultdict
from typing import Any, Callable, Dict, List, Optional

from chatmod.lib.errors import ChatModError
from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import MS_PER_DAY, day_key, now_ms, resolve_tz, to_local
from chatmod.models.analytics import (
    ChannelStats, ChatAnalytics, DailySentiment, ModerationStats,
    PeakHour, TopUser, WordFrequency,
)
from chatmod.models.enums import ReviewAction
from chatmod.models.message import FlaggedMessage, Message
from chatmod.models.user import UserProfile
from chatmod.services.snapshot import MESSAGES_PATH, load_flags, load_messages, load_users
from chatmod.services.text_analysis import analyze_sentiment, rank_words

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "general"
UNKNOWN_EMAIL = "Unknown"


class ChatAnalyticsAggregator:
    """Computes ChatAnalytics on demand from a store snapshot."""

    TOP_USERS = 10
    WORD_CLOUD_SIZE = 50

    def __init__(self, store: RecordStore, timezone: str = "UTC", clock: Callable[[], int] = now_ms):
        self.store = store
        self.tz = resolve_tz(timezone)
        self.clock = clock

    @MetricsExporter.track_duration("chat_analytics")
    async def aggregate(self, window_days: int = 30, now_ms: Optional[int] = None) -> ChatAnalytics:
        now = now_ms if now_ms is not None else self.clock()
        start = now - window_days * MS_PER_DAY

        # Step 1: Snapshot
        all_messages = await load_messages(self.store)
        users = await load_users(self.store)
        flags = await load_flags(self.store)

        messages = [m for m in all_messages if start <= m.timestamp_ms <= now]
        total_messages = len(messages)
        total_users = len(users)

        # Step 2: Activity, independent of the window
        day_start = now - MS_PER_DAY
        active_24h = {m.author_id for m in all_messages if day_start <= m.timestamp_ms <= now}

        # Step 3: Moderation funnel for flags raised inside the window
        window_flags = [f for f in flags if start <= f.flagged_at_ms <= now]

        return ChatAnalytics(
            total_messages=total_messages,
            total_users=total_users,
            active_users_24h=len(active_24h),
            average_messages_per_user=total_messages / total_users if total_users else 0.0,
            peak_hours=self._peak_hours(messages),
            sentiment_over_time=self._daily_sentiment(messages),
            moderation_stats=self._moderation_stats(window_flags, total_messages),
            top_users=self._top_users(messages, users),
            word_cloud=[
                WordFrequency(word=w, frequency=c)
                for w, c in rank_words((m.text for m in messages), self.WORD_CLOUD_SIZE)
            ],
            channel_stats=self._channel_stats(messages),
        )

    async def monitor_analytics(self, callback: Callable[[ChatAnalytics], Any]) -> Callable[[], None]:
        """Recompute the 1-day aggregate on every message change. Errors are logged."""
        async def on_change(_data):
            try:
                result = callback(await self.aggregate(window_days=1))
                if inspect.isawaitable(result):
                    await result
            except ChatModError as e:
                logger.error(f"Error monitoring analytics: {e}")

        return await self.store.subscribe(MESSAGES_PATH, on_change)

    def _peak_hours(self, messages: List[Message]) -> List[PeakHour]:
        hours = Counter(to_local(m.timestamp_ms, self.tz).hour for m in messages)
        ranked = sorted(hours.items(), key=lambda item: (-item[1], item[0]))
        return [PeakHour(hour=hour, message_count=count) for hour, count in ranked]

    def _daily_sentiment(self, messages: List[Message]) -> List[DailySentiment]:
        days: Dict[str, List[float]] = defaultdict(list)
        for m in messages:
            days[day_key(m.timestamp_ms, self.tz)].append(analyze_sentiment(m.text).comparative)
        return [
            DailySentiment(date=day, avg_sentiment=sum(values) / len(values), message_count=len(values))
            for day, values in sorted(days.items())
        ]

    @staticmethod
    def _moderation_stats(flags: List[FlaggedMessage], total_messages: int) -> ModerationStats:
        total = len(flags)
        auto = sum(1 for f in flags if f.auto_flagged)
        return ModerationStats(
            total_flagged=total,
            auto_flagged=auto,
            manual_flagged=total - auto,
            deleted_messages=sum(1 for f in flags if f.resolution_action == ReviewAction.DELETED),
            approved_messages=sum(1 for f in flags if f.resolution_action == ReviewAction.APPROVED),
            flagged_ratio=total / total_messages if total_messages else 0.0,
        )

    def _top_users(self, messages: List[Message], users: Dict[str, UserProfile]) -> List[TopUser]:
        counts = Counter(m.author_id for m in messages)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:self.TOP_USERS]
        return [
            TopUser(
                user_id=uid,
                email=users[uid].email if uid in users else UNKNOWN_EMAIL,
                message_count=count,
            )
            for uid, count in ranked
        ]

    @staticmethod
    def _channel_stats(messages: List[Message]) -> Dict[str, ChannelStats]:
        counts: Counter = Counter()
        authors: Dict[str, set] = defaultdict(set)
        for m in messages:
            channel = m.channel_id or DEFAULT_CHANNEL
            counts[channel] += 1
            authors[channel].add(m.author_id)
        return {
            channel: ChannelStats(message_count=count, user_count=len(authors[channel]))
            for channel, count in counts.items()
        }
