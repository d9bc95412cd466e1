"""
User risk scoring.
Bounded 0-100 advisory score from behavioural signals, used to rank users
for moderator attention. Never used to take automatic action.
"""

from typing import List, Optional

from chatmod.models.analytics import SentimentBucket, UserBehaviorMetrics


class RiskScorer:
    """
    Additive threshold score. Each signal that crosses its threshold adds
    its weight; the sum is capped at MAX_SCORE. Absent signals add nothing.
    """

    WEIGHTS = {
        'message_rate': 20,        # possible flooding
        'flagged_ratio': 30,
        'negative_sentiment': 25,
        'fast_replies': 15,        # possible bot
        'short_messages': 10,      # possible spam
    }

    # Thresholds
    MESSAGES_PER_HOUR_THRESHOLD = 10
    FLAGGED_RATIO_THRESHOLD = 0.1
    SENTIMENT_THRESHOLD = -0.5
    RESPONSE_TIME_THRESHOLD_MS = 5000
    MESSAGE_LENGTH_THRESHOLD = 10

    MAX_SCORE = 100.0

    def score(self, metrics: UserBehaviorMetrics) -> float:
        return self.score_signals(
            messages_per_hour=metrics.messages_per_hour,
            flagged_message_ratio=metrics.flagged_message_ratio,
            sentiment_trend=metrics.sentiment_trend,
            response_time_avg_ms=metrics.response_time_avg_ms,
            average_message_length=metrics.average_message_length if metrics.total_messages else None,
        )

    def score_signals(
        self,
        messages_per_hour: Optional[float] = None,
        flagged_message_ratio: Optional[float] = None,
        sentiment_trend: Optional[List[SentimentBucket]] = None,
        response_time_avg_ms: Optional[float] = None,
        average_message_length: Optional[float] = None,
    ) -> float:
        risk = 0.0

        if messages_per_hour is not None and messages_per_hour > self.MESSAGES_PER_HOUR_THRESHOLD:
            risk += self.WEIGHTS['message_rate']

        if flagged_message_ratio is not None and flagged_message_ratio > self.FLAGGED_RATIO_THRESHOLD:
            risk += self.WEIGHTS['flagged_ratio']

        avg_sentiment = self.mean_sentiment(sentiment_trend)
        if avg_sentiment is not None and avg_sentiment < self.SENTIMENT_THRESHOLD:
            risk += self.WEIGHTS['negative_sentiment']

        if response_time_avg_ms is not None and response_time_avg_ms < self.RESPONSE_TIME_THRESHOLD_MS:
            risk += self.WEIGHTS['fast_replies']

        if average_message_length is not None and average_message_length < self.MESSAGE_LENGTH_THRESHOLD:
            risk += self.WEIGHTS['short_messages']

        return min(risk, self.MAX_SCORE)

    @staticmethod
    def mean_sentiment(trend: Optional[List[SentimentBucket]]) -> Optional[float]:
        if not trend:
            return None
        return sum(bucket.avg_sentiment for bucket in trend) / len(trend)
