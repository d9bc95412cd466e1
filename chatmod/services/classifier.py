"""
Message classifier - rule-based verdict for a single chat message.
Ordered stages, first match wins:
severe profanity, harassment, moderate profanity, mild profanity, spam, length.
Pure and synchronous; persistence is the caller's job.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Pattern, Set

from chatmod.lib.record_store import RecordStore
from chatmod.models.enums import FlagReason, RuleAction, RuleType, Severity, Verdict
from chatmod.models.message import ModerationRule
from chatmod.services.heuristics import (
    SPAM_PATTERNS, compile_lexicon, exceeds_length, find_spam_pattern, normalize_text
)

logger = logging.getLogger(__name__)

RULES_PATH = "moderationRules"


@dataclass
class Classification:
    """Verdict for one message."""
    verdict: Verdict
    reason: Optional[FlagReason] = None
    severity: Optional[Severity] = None
    rule_id: Optional[str] = None
    matched: Optional[str] = None

    @property
    def should_flag(self) -> bool:
        return self.verdict != Verdict.ALLOW

    @property
    def should_delete(self) -> bool:
        return self.verdict == Verdict.AUTO_DELETE


class Classifier:
    """
    Stateless rule evaluator.
    Lexicons match whole words on NFKC-normalized, case-folded text.
    """

    SEVERE_WORDS = ['fuck', 'fucking', 'motherfucker', 'cunt', 'asshole', 'bullshit']
    MODERATE_WORDS = ['hate', 'kill', 'die', 'trash', 'garbage', 'worthless']
    MILD_WORDS = ['damn', 'hell', 'crap', 'stupid', 'idiot', 'moron', 'dumb']

    HARASSMENT_PATTERNS = [
        r'you\s+(?:should|need\s+to)\s+(?:die|kill\s+yourself)',
        r'\bkys\b',
        r'go\s+kill\s+yourself',
        r'nobody\s+likes\s+you',
        r'you\s+are\s+(?:worthless|pathetic|disgusting)',
    ]

    # Rule ids, in evaluation order
    SEVERE_RULE = 'profanity-severe'
    HARASSMENT_RULE = 'harassment'
    MODERATE_RULE = 'profanity-moderate'
    MILD_RULE = 'profanity-mild'
    SPAM_RULE = 'spam-repetition'
    LENGTH_RULE = 'message-length'

    def __init__(
        self,
        max_length: int = 800,
        severe_words: Optional[Iterable[str]] = None,
        moderate_words: Optional[Iterable[str]] = None,
        mild_words: Optional[Iterable[str]] = None,
        disabled_rules: Iterable[str] = (),
    ):
        self.max_length = max_length
        self.disabled_rules: Set[str] = set(disabled_rules)

        # Compile patterns for performance
        self.severe_regex = compile_lexicon(severe_words if severe_words is not None else self.SEVERE_WORDS)
        self.moderate_regex = compile_lexicon(moderate_words if moderate_words is not None else self.MODERATE_WORDS)
        self.mild_regex = compile_lexicon(mild_words if mild_words is not None else self.MILD_WORDS)
        self.harassment_regex = [re.compile(p) for p in self.HARASSMENT_PATTERNS]

    @classmethod
    def from_rules(cls, rules: Iterable[ModerationRule], max_length: Optional[int] = None) -> "Classifier":
        """
        Build a classifier from stored rules.
        Disabled rules skip their stage; keyword rules supply '|'-separated
        word lists; the length rule supplies the ceiling unless max_length is given.
        """
        by_id: Dict[str, ModerationRule] = {rule.id: rule for rule in rules}
        disabled = [rule_id for rule_id, rule in by_id.items() if not rule.enabled]

        def words(rule_id: str) -> Optional[List[str]]:
            rule = by_id.get(rule_id)
            if rule is None or rule.type != RuleType.KEYWORD:
                return None
            return [w.strip() for w in str(rule.value).split('|') if w.strip()]

        length_rule = by_id.get(cls.LENGTH_RULE)
        if max_length is None:
            max_length = int(length_rule.value) if length_rule is not None else 800

        return cls(
            max_length=max_length,
            severe_words=words(cls.SEVERE_RULE),
            moderate_words=words(cls.MODERATE_RULE),
            mild_words=words(cls.MILD_RULE),
            disabled_rules=disabled,
        )

    def classify(self, text: str, author_id: Optional[str] = None) -> Classification:
        """
        Classify a message. Input is assumed non-empty.
        author_id is accepted for per-author rules and currently unused.
        """
        normalized = normalize_text(text)

        # 1. Severe profanity - auto delete
        match = self._search(self.SEVERE_RULE, self.severe_regex, normalized)
        if match:
            return Classification(Verdict.AUTO_DELETE, FlagReason.PROFANITY, Severity.HIGH,
                                  self.SEVERE_RULE, match)

        # 2. Harassment - auto delete
        if self.HARASSMENT_RULE not in self.disabled_rules:
            for regex in self.harassment_regex:
                found = regex.search(normalized)
                if found:
                    return Classification(Verdict.AUTO_DELETE, FlagReason.HARASSMENT, Severity.HIGH,
                                          self.HARASSMENT_RULE, found.group(0))

        # 3. Moderate profanity - flag
        match = self._search(self.MODERATE_RULE, self.moderate_regex, normalized)
        if match:
            return Classification(Verdict.FLAG, FlagReason.PROFANITY, Severity.MEDIUM,
                                  self.MODERATE_RULE, match)

        # 4. Mild profanity - flag
        match = self._search(self.MILD_RULE, self.mild_regex, normalized)
        if match:
            return Classification(Verdict.FLAG, FlagReason.PROFANITY, Severity.LOW,
                                  self.MILD_RULE, match)

        # 5. Spam patterns run on the raw text
        if self.SPAM_RULE not in self.disabled_rules:
            pattern = find_spam_pattern(text)
            if pattern:
                return Classification(Verdict.FLAG, FlagReason.SPAM, Severity.MEDIUM,
                                      self.SPAM_RULE, pattern)

        # 6. Excessive length
        if self.LENGTH_RULE not in self.disabled_rules and exceeds_length(text, self.max_length):
            return Classification(Verdict.FLAG, FlagReason.INAPPROPRIATE, Severity.LOW,
                                  self.LENGTH_RULE, f"length>{self.max_length}")

        return Classification(Verdict.ALLOW)

    def _search(self, rule_id: str, regex: Optional[Pattern], normalized: str) -> Optional[str]:
        if regex is None or rule_id in self.disabled_rules:
            return None
        found = regex.search(normalized)
        return found.group(0) if found else None


def default_rules(max_length: int = 1000) -> List[ModerationRule]:
    """Rules seeded into moderationRules/ when none exist."""
    return [
        ModerationRule(
            id=Classifier.SEVERE_RULE, name='Severe Profanity', type=RuleType.KEYWORD,
            value='|'.join(Classifier.SEVERE_WORDS), action=RuleAction.AUTO_DELETE,
            severity=Severity.HIGH,
        ),
        ModerationRule(
            id=Classifier.HARASSMENT_RULE, name='Harassment Patterns', type=RuleType.PATTERN,
            value='|'.join(Classifier.HARASSMENT_PATTERNS), action=RuleAction.AUTO_DELETE,
            severity=Severity.HIGH,
        ),
        ModerationRule(
            id=Classifier.MODERATE_RULE, name='Moderate Profanity', type=RuleType.KEYWORD,
            value='|'.join(Classifier.MODERATE_WORDS), action=RuleAction.FLAG,
            severity=Severity.MEDIUM,
        ),
        ModerationRule(
            id=Classifier.MILD_RULE, name='Mild Profanity', type=RuleType.KEYWORD,
            value='|'.join(Classifier.MILD_WORDS), action=RuleAction.FLAG,
            severity=Severity.LOW,
        ),
        ModerationRule(
            id=Classifier.SPAM_RULE, name='Spam Repetition', type=RuleType.PATTERN,
            value='|'.join(p.pattern for p in SPAM_PATTERNS), action=RuleAction.FLAG,
            severity=Severity.MEDIUM,
        ),
        ModerationRule(
            id=Classifier.LENGTH_RULE, name='Excessive Length', type=RuleType.LENGTH,
            value=max_length, action=RuleAction.FLAG, severity=Severity.LOW,
        ),
    ]


async def initialize_rules(store: RecordStore, max_length: int = 1000) -> List[ModerationRule]:
    """Seed the default rules when moderationRules/ is empty; return what is stored."""
    existing = await store.read_children(RULES_PATH)
    if not existing:
        rules = default_rules(max_length)
        # One record per rule so later per-rule updates stay addressable
        for rule in rules:
            await store.write(f"{RULES_PATH}/{rule.id}", rule.model_dump(mode='json'))
        logger.info(f"Seeded {len(rules)} default moderation rules")
        return rules
    return await load_rules(store)


async def load_rules(store: RecordStore) -> List[ModerationRule]:
    rules = []
    for rule_id, data in (await store.read_children(RULES_PATH)).items():
        try:
            rules.append(ModerationRule(**{**data, 'id': rule_id}))
        except ValueError as e:
            logger.warning(f"Skipping malformed moderation rule {rule_id}: {e}")
    return rules
