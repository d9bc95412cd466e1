"""
Analytics data models.
Derived aggregates (behaviour metrics, chat analytics, moderation effectiveness)
and the persisted analytics report.
"""

from typing import Optional, List, Dict
from pydantic import BaseModel, Field

from chatmod.models.enums import ReportType


class Sentiment(BaseModel):
    """Lexicon sentiment of one text. Word-list based, not a trained model."""
    score: int = 0
    comparative: float = 0.0
    positive: List[str] = Field(default_factory=list)
    negative: List[str] = Field(default_factory=list)


class KeywordCount(BaseModel):
    word: str
    count: int


class SentimentBucket(BaseModel):
    """Average comparative sentiment for one week (keyed by its Sunday)."""
    date: str
    avg_sentiment: float


class UserBehaviorMetrics(BaseModel):
    """
    Per-user aggregate over a time window.
    Derived on demand, never persisted on its own.
    """
    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None

    # Volume
    total_messages: int = 0
    average_message_length: float = 0.0
    average_words_per_message: float = 0.0
    messages_per_hour: float = 0.0

    # Patterns
    peak_activity_hours: List[int] = Field(default_factory=list)
    sentiment_trend: List[SentimentBucket] = Field(default_factory=list)
    flagged_message_ratio: float = 0.0
    response_time_avg_ms: Optional[float] = None  # None: no reply gaps seen
    top_keywords: List[KeywordCount] = Field(default_factory=list)

    # Advisory triage score
    risk_score: float = Field(ge=0.0, le=100.0, default=0.0)
    last_activity_ms: int = 0


class PeakHour(BaseModel):
    hour: int = Field(ge=0, le=23)
    message_count: int


class DailySentiment(BaseModel):
    date: str
    avg_sentiment: float
    message_count: int


class ModerationStats(BaseModel):
    """Moderation funnel for flags raised inside the window."""
    total_flagged: int = 0
    auto_flagged: int = 0
    manual_flagged: int = 0
    deleted_messages: int = 0
    approved_messages: int = 0
    flagged_ratio: float = 0.0


class TopUser(BaseModel):
    user_id: str
    email: str
    message_count: int


class WordFrequency(BaseModel):
    word: str
    frequency: int


class ChannelStats(BaseModel):
    message_count: int = 0
    user_count: int = 0


class ChatAnalytics(BaseModel):
    """System-wide aggregate over a time window."""
    total_messages: int = 0
    total_users: int = 0
    active_users_24h: int = 0
    average_messages_per_user: float = 0.0
    peak_hours: List[PeakHour] = Field(default_factory=list)
    sentiment_over_time: List[DailySentiment] = Field(default_factory=list)
    moderation_stats: ModerationStats = Field(default_factory=ModerationStats)
    top_users: List[TopUser] = Field(default_factory=list)
    word_cloud: List[WordFrequency] = Field(default_factory=list)
    channel_stats: Dict[str, ChannelStats] = Field(default_factory=dict)


class ModeratorPerformance(BaseModel):
    moderator_id: str
    email: str
    review_count: int
    avg_review_time_minutes: float
    accuracy_rate: float = Field(ge=0.0, le=1.0)


class RuleEffectiveness(BaseModel):
    rule_id: str
    rule_name: str
    triggered_count: int
    correct_flags: int
    false_positives: int
    effectiveness: float = Field(ge=0.0, le=1.0)


class ModerationEffectiveness(BaseModel):
    """
    How well flags were handled inside the window.
    Deleted counts as a correct flag, approved as a false positive.
    """
    total_reviews: int = 0
    avg_review_time_minutes: float = 0.0
    accuracy_rate: float = Field(ge=0.0, le=1.0, default=0.0)
    false_positive_rate: float = Field(ge=0.0, le=1.0, default=0.0)
    moderator_performance: List[ModeratorPerformance] = Field(default_factory=list)
    rule_effectiveness: List[RuleEffectiveness] = Field(default_factory=list)


class AnalyticsReport(BaseModel):
    """
    Timestamped report composed by the report generator.
    Immutable once stored; removed by retention cleanup.
    """
    id: str
    type: ReportType
    window_start_ms: int
    window_end_ms: int
    generated_at_ms: int
    generated_by_user_id: str
    chat_analytics: ChatAnalytics
    behavior_metrics: List[UserBehaviorMetrics] = Field(default_factory=list)
    moderation_effectiveness: ModerationEffectiveness
    insights: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class UserMessageCount(BaseModel):
    user_id: str
    display_name: str
    message_count: int


class LiveChatStats(BaseModel):
    """Admin dashboard counters over every stored message."""
    total_messages: int = 0
    active_users: int = 0
    messages_last_hour: int = 0
    top_users: List[UserMessageCount] = Field(default_factory=list)


class RecentChatStats(BaseModel):
    """Counts over the latest messages only."""
    message_count: int = 0
    unique_users: int = 0
    timestamp_ms: int


class ExportedMessage(BaseModel):
    timestamp: str  # ISO 8601, UTC
    author_id: str
    author_display_name: str
    text: str


class ChatHistoryExport(BaseModel):
    exported_at: str
    total_messages: int
    messages: List[ExportedMessage] = Field(default_factory=list)
