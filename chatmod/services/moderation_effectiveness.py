"""
Moderation effectiveness.
How quickly and how accurately reviewed flags were handled: a deleted
message counts as a correct flag, an approved one as a false positive.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from chatmod.lib.metrics import MetricsExporter
from chatmod.lib.record_store import RecordStore
from chatmod.lib.timeutils import MS_PER_DAY, MS_PER_MINUTE, now_ms
from chatmod.models.analytics import ModerationEffectiveness, ModeratorPerformance, RuleEffectiveness
from chatmod.models.enums import ReviewAction
from chatmod.models.message import FlaggedMessage
from chatmod.services.snapshot import load_flags, load_users

logger = logging.getLogger(__name__)


def _rate(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


def _review_minutes(flag: FlaggedMessage) -> Optional[float]:
    if flag.reviewed_at_ms is None:
        return None
    return max(flag.reviewed_at_ms - flag.flagged_at_ms, 0) / MS_PER_MINUTE


def _mean_review_minutes(flags: List[FlaggedMessage]) -> float:
    times = [t for t in (_review_minutes(f) for f in flags) if t is not None]
    return sum(times) / len(times) if times else 0.0


def _outcomes(flags: List[FlaggedMessage]):
    deleted = sum(1 for f in flags if f.resolution_action == ReviewAction.DELETED)
    approved = sum(1 for f in flags if f.resolution_action == ReviewAction.APPROVED)
    return deleted, approved


class ModerationEffectivenessAnalyzer:
    """Review latency and accuracy over flags raised inside a window."""

    def __init__(self, store: RecordStore, clock: Callable[[], int] = now_ms):
        self.store = store
        self.clock = clock

    @MetricsExporter.track_duration("moderation_effectiveness")
    async def analyze(self, window_days: int = 30, now_ms: Optional[int] = None) -> ModerationEffectiveness:
        now = now_ms if now_ms is not None else self.clock()
        start = now - window_days * MS_PER_DAY

        reviewed = [
            f for f in await load_flags(self.store)
            if f.reviewed and start <= f.flagged_at_ms <= now
        ]
        if not reviewed:
            return ModerationEffectiveness()

        users = await load_users(self.store)
        deleted, approved = _outcomes(reviewed)

        # Per moderator
        by_moderator: Dict[str, List[FlaggedMessage]] = defaultdict(list)
        for f in reviewed:
            by_moderator[f.reviewed_by_user_id or "unknown"].append(f)

        moderator_performance = []
        for moderator_id, flags in sorted(by_moderator.items()):
            mod_deleted, mod_approved = _outcomes(flags)
            moderator_performance.append(ModeratorPerformance(
                moderator_id=moderator_id,
                email=users[moderator_id].email if moderator_id in users else "Unknown",
                review_count=len(flags),
                avg_review_time_minutes=_mean_review_minutes(flags),
                accuracy_rate=_rate(mod_deleted, mod_deleted + mod_approved),
            ))

        # Per rule (flag reason)
        by_reason: Dict[str, List[FlaggedMessage]] = defaultdict(list)
        for f in reviewed:
            by_reason[f.flag_reason.value].append(f)

        rule_effectiveness = []
        for reason, flags in sorted(by_reason.items()):
            correct, false_positives = _outcomes(flags)
            rule_effectiveness.append(RuleEffectiveness(
                rule_id=reason,
                rule_name=reason.title(),
                triggered_count=len(flags),
                correct_flags=correct,
                false_positives=false_positives,
                effectiveness=_rate(correct, correct + false_positives),
            ))

        return ModerationEffectiveness(
            total_reviews=len(reviewed),
            avg_review_time_minutes=_mean_review_minutes(reviewed),
            accuracy_rate=_rate(deleted, deleted + approved),
            false_positive_rate=_rate(approved, deleted + approved),
            moderator_performance=moderator_performance,
            rule_effectiveness=rule_effectiveness,
        )
