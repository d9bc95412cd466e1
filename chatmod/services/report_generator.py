"""
Analytics report generator.
Composes chat analytics, moderation effectiveness and behaviour metrics for
the most active users into a persisted report with rule-based insights.
"""

import asyncio
import logging
import math
from typing import Callable, List, Optional, Tuple

from chatmod.lib.errors import DeadlineExceeded, InvalidArgument
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import MS_PER_DAY, now_ms
from chatmod.models.analytics import (
    AnalyticsReport, ChatAnalytics, ModerationEffectiveness, UserBehaviorMetrics,
)
from chatmod.models.enums import ReportType
from chatmod.services.behavior_analyzer import BehaviorAnalyzer
from chatmod.services.chat_analytics import ChatAnalyticsAggregator
from chatmod.services.moderation_effectiveness import ModerationEffectivenessAnalyzer

logger = logging.getLogger(__name__)


class ReportGenerator:
    """Builds, stores, lists and expires analytics reports."""

    PATH = "analyticsReports"

    WINDOW_DAYS = {
        ReportType.DAILY: 1,
        ReportType.WEEKLY: 7,
        ReportType.MONTHLY: 30,
    }

    BEHAVIOR_SAMPLE_SIZE = 5

    # Insight thresholds
    ENGAGEMENT_THRESHOLD = 0.1
    FLAGGED_RATIO_THRESHOLD = 0.05
    REVIEW_TIME_THRESHOLD_MINUTES = 60
    HIGH_RISK_THRESHOLD = 70
    SENTIMENT_DECLINE_THRESHOLD = -0.2
    SENTIMENT_LOOKBACK_DAYS = 7

    def __init__(
        self,
        store: RecordStore,
        chat_analytics: ChatAnalyticsAggregator,
        effectiveness: ModerationEffectivenessAnalyzer,
        behavior: BehaviorAnalyzer,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.chat_analytics = chat_analytics
        self.effectiveness = effectiveness
        self.behavior = behavior
        self.clock = clock

    def resolve_window(
        self,
        report_type: ReportType,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
    ) -> Tuple[int, int, int]:
        """(days, window_start_ms, window_end_ms) for a report type."""
        try:
            report_type = ReportType(report_type)
        except ValueError:
            raise InvalidArgument(f"Invalid report type: {report_type}")

        if report_type == ReportType.CUSTOM:
            if start_ms is None or end_ms is None:
                raise InvalidArgument("Start and end required for custom reports")
            if end_ms <= start_ms:
                raise InvalidArgument("Custom report end must be after start")
            days = math.ceil((end_ms - start_ms) / MS_PER_DAY)
            return days, start_ms, end_ms

        days = self.WINDOW_DAYS[report_type]
        end = self.clock()
        return days, end - days * MS_PER_DAY, end

    async def generate_report(
        self,
        report_type: ReportType,
        start_ms: Optional[int] = None,
        end_ms: Optional[int] = None,
        requested_by: str = "system",
        timeout_seconds: Optional[float] = None,
    ) -> AnalyticsReport:
        days, window_start, window_end = self.resolve_window(report_type, start_ms, end_ms)

        aggregation = self._aggregate(days, window_end)
        if timeout_seconds is not None:
            try:
                chat, effectiveness, behavior = await asyncio.wait_for(aggregation, timeout_seconds)
            except asyncio.TimeoutError:
                raise DeadlineExceeded(f"Report aggregation exceeded {timeout_seconds}s")
        else:
            chat, effectiveness, behavior = await aggregation

        insights, recommendations = self.generate_insights(chat, effectiveness, behavior)

        report_id = await self.store.append(self.PATH)
        report = AnalyticsReport(
            id=report_id,
            type=ReportType(report_type),
            window_start_ms=window_start,
            window_end_ms=window_end,
            generated_at_ms=self.clock(),
            generated_by_user_id=requested_by,
            chat_analytics=chat,
            behavior_metrics=behavior,
            moderation_effectiveness=effectiveness,
            insights=insights,
            recommendations=recommendations,
        )
        await self.store.write(f"{self.PATH}/{report_id}", report.model_dump(mode="json"))
        logger.info(f"Generated {report.type.value} report {report_id} for {requested_by}")
        return report

    async def _aggregate(
        self, days: int, end_ms: int
    ) -> Tuple[ChatAnalytics, ModerationEffectiveness, List[UserBehaviorMetrics]]:
        chat, effectiveness = await asyncio.gather(
            self.chat_analytics.aggregate(days, now_ms=end_ms),
            self.effectiveness.analyze(days, now_ms=end_ms),
        )
        top_users = chat.top_users[:self.BEHAVIOR_SAMPLE_SIZE]
        behavior = await asyncio.gather(*[
            self.behavior.analyze(user.user_id, days, now_ms=end_ms) for user in top_users
        ])
        return chat, effectiveness, list(behavior)

    def generate_insights(
        self,
        chat: ChatAnalytics,
        effectiveness: ModerationEffectiveness,
        behavior: List[UserBehaviorMetrics],
    ) -> Tuple[List[str], List[str]]:
        """Threshold rules in fixed order, one insight and one recommendation each."""
        insights: List[str] = []
        recommendations: List[str] = []

        # 1. Engagement
        if chat.total_users and chat.active_users_24h < chat.total_users * self.ENGAGEMENT_THRESHOLD:
            pct = round(chat.active_users_24h / chat.total_users * 100)
            insights.append(f"Low user engagement: Only {pct}% of users were active in the last 24 hours")
            recommendations.append("Consider implementing engagement features like notifications or daily challenges")

        # 2. Moderation load
        if chat.moderation_stats.flagged_ratio > self.FLAGGED_RATIO_THRESHOLD:
            pct = round(chat.moderation_stats.flagged_ratio * 100)
            insights.append(f"High moderation load: {pct}% of messages are being flagged")
            recommendations.append("Review and optimize moderation rules to reduce false positives")

        # 3. Review latency
        if effectiveness.avg_review_time_minutes > self.REVIEW_TIME_THRESHOLD_MINUTES:
            minutes = round(effectiveness.avg_review_time_minutes)
            insights.append(f"Slow moderation response: Average review time is {minutes} minutes")
            recommendations.append("Add more moderators or implement auto-moderation for clear violations")

        # 4. High-risk users
        high_risk = [m for m in behavior if m.risk_score > self.HIGH_RISK_THRESHOLD]
        if high_risk:
            insights.append(f"{len(high_risk)} users identified as high-risk based on behavior patterns")
            recommendations.append("Review high-risk users for potential policy violations")

        # 5. Sentiment, skipped without data
        recent = chat.sentiment_over_time[-self.SENTIMENT_LOOKBACK_DAYS:]
        if recent:
            avg_recent = sum(day.avg_sentiment for day in recent) / len(recent)
            if avg_recent < self.SENTIMENT_DECLINE_THRESHOLD:
                insights.append("Declining conversation sentiment detected")
                recommendations.append(
                    "Consider community-building initiatives or content moderation adjustments"
                )

        return insights, recommendations

    async def get_reports(self, limit: int = 10) -> List[AnalyticsReport]:
        """Stored reports, most recent first."""
        reports = []
        for report_id, data in (await self.store.read_children(self.PATH)).items():
            try:
                reports.append(AnalyticsReport(**{**data, "id": report_id}))
            except ValueError as e:
                logger.warning(f"Skipping malformed report {report_id}: {e}")
        reports.sort(key=lambda r: r.generated_at_ms, reverse=True)
        return reports[:limit]

    async def cleanup_old_reports(self, days_to_keep: int = 90) -> int:
        """Delete reports generated before the retention cutoff; returns how many."""
        cutoff = self.clock() - days_to_keep * MS_PER_DAY
        expired = [
            report_id
            for report_id, data in (await self.store.read_children(self.PATH)).items()
            if isinstance(data, dict) and data.get("generated_at_ms", 0) < cutoff
        ]
        await asyncio.gather(*[self.store.delete(f"{self.PATH}/{report_id}") for report_id in expired])
        if expired:
            logger.info(f"Deleted {len(expired)} reports older than {days_to_keep} days")
        return len(expired)
