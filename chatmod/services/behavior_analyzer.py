"""
Per-user behaviour analysis.
Aggregates one user's messages over a window into volume, timing, sentiment
and keyword signals, then scores the result with the RiskScorer.
"""

import logging
from collections import Counter, defaultdict
from typing import Callable, Dict, List, Optional

from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import MS_PER_DAY, MS_PER_HOUR, MS_PER_MINUTE, now_ms, resolve_tz, to_local, week_key
from chatmod.models.analytics import SentimentBucket, UserBehaviorMetrics
from chatmod.models.message import Message
from chatmod.models.user import UserProfile
from chatmod.services.risk_scorer import RiskScorer
from chatmod.services.snapshot import USERS_PATH, load_flags, load_messages
from chatmod.services.text_analysis import analyze_sentiment, top_keywords

logger = logging.getLogger(__name__)


class BehaviorAnalyzer:
    """Computes UserBehaviorMetrics on demand from a store snapshot."""

    PEAK_HOURS = 3
    TOP_KEYWORDS = 10
    # Consecutive messages closer than this count as replies
    REPLY_GAP_MS = 5 * MS_PER_MINUTE

    def __init__(
        self,
        store: RecordStore,
        risk_scorer: Optional[RiskScorer] = None,
        timezone: str = "UTC",
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.risk_scorer = risk_scorer or RiskScorer()
        self.tz = resolve_tz(timezone)
        self.clock = clock

    @MetricsExporter.track_duration("behavior")
    async def analyze(self, user_id: str, window_days: int = 30, now_ms: Optional[int] = None) -> UserBehaviorMetrics:
        now = now_ms if now_ms is not None else self.clock()
        start = now - window_days * MS_PER_DAY

        # Step 1: Snapshot
        profile = await self._load_profile(user_id)
        messages = [
            m for m in await load_messages(self.store)
            if m.author_id == user_id and start <= m.timestamp_ms <= now
        ]

        email = profile.email if profile else None
        display_name = profile.display_name if profile else None

        if not messages:
            return UserBehaviorMetrics(
                user_id=user_id,
                email=email,
                display_name=display_name,
                last_activity_ms=profile.last_active_ms if profile else 0,
            )

        # Step 2: Volume
        total = len(messages)
        avg_length = sum(len(m.text) for m in messages) / total
        avg_words = sum(len(m.text.split()) for m in messages) / total

        span_hours = (messages[-1].timestamp_ms - messages[0].timestamp_ms) / MS_PER_HOUR
        messages_per_hour = total / span_hours if span_hours > 0 else 0.0

        # Step 3: Patterns
        user_flags = [f for f in await load_flags(self.store) if f.author_id == user_id]

        metrics = UserBehaviorMetrics(
            user_id=user_id,
            email=email,
            display_name=display_name,
            total_messages=total,
            average_message_length=avg_length,
            average_words_per_message=avg_words,
            messages_per_hour=messages_per_hour,
            peak_activity_hours=self._peak_hours(messages),
            sentiment_trend=self._weekly_sentiment(messages),
            flagged_message_ratio=len(user_flags) / total,
            response_time_avg_ms=self._reply_gap_average(messages),
            top_keywords=top_keywords((m.text for m in messages), self.TOP_KEYWORDS),
            last_activity_ms=messages[-1].timestamp_ms,
        )

        # Step 4: Risk score last
        metrics.risk_score = self.risk_scorer.score(metrics)
        return metrics

    async def _load_profile(self, user_id: str) -> Optional[UserProfile]:
        data = await self.store.read(f"{USERS_PATH}/{user_id}")
        if not data:
            logger.debug(f"No profile for user {user_id}")
            return None
        try:
            return UserProfile(**{**data, "uid": user_id})
        except ValueError as e:
            logger.warning(f"Malformed profile for user {user_id}: {e}")
            return None

    def _peak_hours(self, messages: List[Message]) -> List[int]:
        hours = Counter(to_local(m.timestamp_ms, self.tz).hour for m in messages)
        ranked = sorted(hours.items(), key=lambda item: (-item[1], item[0]))
        return [hour for hour, _ in ranked[:self.PEAK_HOURS]]

    def _weekly_sentiment(self, messages: List[Message]) -> List[SentimentBucket]:
        weeks: Dict[str, List[float]] = defaultdict(list)
        for m in messages:
            weeks[week_key(m.timestamp_ms, self.tz)].append(analyze_sentiment(m.text).comparative)
        return [
            SentimentBucket(date=week, avg_sentiment=sum(values) / len(values))
            for week, values in sorted(weeks.items())
        ]

    def _reply_gap_average(self, messages: List[Message]) -> Optional[float]:
        gaps = [
            later.timestamp_ms - earlier.timestamp_ms
            for earlier, later in zip(messages, messages[1:])
            if later.timestamp_ms - earlier.timestamp_ms < self.REPLY_GAP_MS
        ]
        if not gaps:
            return None
        return sum(gaps) / len(gaps)
