"""
Tests for the risk scorer.
"""

from hypothesis import given, settings, strategies as st

from chatmod.models.analytics import SentimentBucket, UserBehaviorMetrics
from chatmod.services.risk_scorer import RiskScorer

scorer = RiskScorer()

optional_rate = st.one_of(st.none(), st.floats(min_value=0, max_value=1000, allow_nan=False))
optional_ratio = st.one_of(st.none(), st.floats(min_value=0, max_value=5, allow_nan=False))
optional_ms = st.one_of(st.none(), st.floats(min_value=0, max_value=600000, allow_nan=False))
optional_length = st.one_of(st.none(), st.floats(min_value=0, max_value=800, allow_nan=False))
trend = st.one_of(
    st.none(),
    st.lists(st.floats(min_value=-5, max_value=5, allow_nan=False), max_size=6),
)


def buckets(values):
    if values is None:
        return None
    return [SentimentBucket(date=f"2024-01-{i + 1:02d}", avg_sentiment=v) for i, v in enumerate(values)]


def test_absent_signals_score_zero():
    assert scorer.score_signals() == 0.0


def test_every_signal_crossed():
    risk = scorer.score_signals(
        messages_per_hour=11,
        flagged_message_ratio=0.2,
        sentiment_trend=buckets([-1.0]),
        response_time_avg_ms=1000,
        average_message_length=5,
    )
    assert risk == 100.0


def test_thresholds_are_strict():
    risk = scorer.score_signals(
        messages_per_hour=10,
        flagged_message_ratio=0.1,
        sentiment_trend=buckets([-0.5]),
        response_time_avg_ms=5000,
        average_message_length=10,
    )
    assert risk == 0.0


def test_single_signal_weight():
    assert scorer.score_signals(flagged_message_ratio=0.5) == RiskScorer.WEIGHTS['flagged_ratio']


def test_empty_metrics_score_zero():
    # No messages: zero average length must not count as short messages
    assert scorer.score(UserBehaviorMetrics(user_id="u1")) == 0.0


@given(rate=optional_rate, ratio=optional_ratio, trend_values=trend, reply=optional_ms, length=optional_length)
@settings(max_examples=200)
def test_score_bounded(rate, ratio, trend_values, reply, length):
    risk = scorer.score_signals(rate, ratio, buckets(trend_values), reply, length)
    assert 0.0 <= risk <= RiskScorer.MAX_SCORE


@given(rate=optional_rate, ratio=optional_ratio, reply=optional_ms, length=optional_length,
       extra_rate=st.floats(min_value=0, max_value=100, allow_nan=False),
       extra_ratio=st.floats(min_value=0, max_value=1, allow_nan=False))
@settings(max_examples=200)
def test_more_activity_never_lowers_risk(rate, ratio, reply, length, extra_rate, extra_ratio):
    base = scorer.score_signals(rate, ratio, None, reply, length)
    worse = scorer.score_signals(
        (rate or 0) + extra_rate,
        (ratio or 0) + extra_ratio,
        None,
        reply,
        length,
    )
    assert worse >= base


@given(rate=optional_rate, ratio=optional_ratio, reply=st.floats(min_value=0, max_value=600000, allow_nan=False),
       length=st.floats(min_value=0, max_value=800, allow_nan=False),
       shrink=st.floats(min_value=0, max_value=1, allow_nan=False))
@settings(max_examples=200)
def test_faster_and_shorter_never_lowers_risk(rate, ratio, reply, length, shrink):
    base = scorer.score_signals(rate, ratio, None, reply, length)
    worse = scorer.score_signals(rate, ratio, None, reply * shrink, length * shrink)
    assert worse >= base


@given(values=st.lists(st.floats(min_value=-5, max_value=5, allow_nan=False), min_size=1, max_size=6),
       drop=st.floats(min_value=0, max_value=5, allow_nan=False))
@settings(max_examples=200)
def test_more_negative_sentiment_never_lowers_risk(values, drop):
    base = scorer.score_signals(sentiment_trend=buckets(values))
    worse = scorer.score_signals(sentiment_trend=buckets([v - drop for v in values]))
    assert worse >= base
