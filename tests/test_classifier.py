"""
Tests for the message classifier.
"""

import pytest
from hypothesis import given, settings, strategies as st

from chatmod.models.enums import FlagReason, Severity, Verdict
from chatmod.services.classifier import Classifier, default_rules, initialize_rules, load_rules


def distinct_words(count):
    # No repeated phrase, caps or digit run
    return " ".join(f"w{i}" for i in range(count))


@pytest.fixture
def classifier():
    return Classifier(max_length=800)


class TestClassifierPrecedence:
    """First matching stage wins."""

    def test_clean_message_allowed(self, classifier):
        result = classifier.classify("hello everyone, how is it going?")
        assert result.verdict == Verdict.ALLOW
        assert result.reason is None
        assert result.severity is None

    def test_severe_profanity_auto_deletes(self, classifier):
        result = classifier.classify("what the fuck")
        assert result.verdict == Verdict.AUTO_DELETE
        assert result.reason == FlagReason.PROFANITY
        assert result.severity == Severity.HIGH
        assert result.rule_id == Classifier.SEVERE_RULE

    def test_harassment_auto_deletes(self, classifier):
        result = classifier.classify("honestly nobody likes you")
        assert result.verdict == Verdict.AUTO_DELETE
        assert result.reason == FlagReason.HARASSMENT
        assert result.severity == Severity.HIGH

    def test_harassment_beats_moderate_profanity(self, classifier):
        # "die" alone is moderate, the phrase is harassment
        result = classifier.classify("you should die")
        assert result.verdict == Verdict.AUTO_DELETE
        assert result.reason == FlagReason.HARASSMENT

    def test_kys_abbreviation(self, classifier):
        assert classifier.classify("just kys").reason == FlagReason.HARASSMENT

    def test_moderate_profanity_flags_medium(self, classifier):
        result = classifier.classify("this is garbage")
        assert result.verdict == Verdict.FLAG
        assert result.reason == FlagReason.PROFANITY
        assert result.severity == Severity.MEDIUM

    def test_mild_profanity_flags_low(self, classifier):
        result = classifier.classify("that was a dumb move")
        assert result.verdict == Verdict.FLAG
        assert result.reason == FlagReason.PROFANITY
        assert result.severity == Severity.LOW

    def test_moderate_beats_mild(self, classifier):
        assert classifier.classify("stupid trash").severity == Severity.MEDIUM

    def test_profanity_beats_spam(self, classifier):
        result = classifier.classify("damn check https://example.com")
        assert result.reason == FlagReason.PROFANITY

    def test_spam_url(self, classifier):
        result = classifier.classify("check out https://example.com/deal")
        assert result.verdict == Verdict.FLAG
        assert result.reason == FlagReason.SPAM
        assert result.severity == Severity.MEDIUM

    def test_spam_repeated_characters(self, classifier):
        assert classifier.classify("sooooooo good").reason == FlagReason.SPAM

    def test_five_repeated_characters_allowed(self, classifier):
        assert classifier.classify("sooooo good").verdict == Verdict.ALLOW

    def test_spam_all_caps_line(self, classifier):
        assert classifier.classify("BUY THIS NOW FRIENDS!!").reason == FlagReason.SPAM

    def test_lowercase_line_is_not_caps_spam(self, classifier):
        assert classifier.classify("buy this now friends").verdict == Verdict.ALLOW

    def test_spam_repeated_phrase(self, classifier):
        assert classifier.classify("join now join now join now").reason == FlagReason.SPAM

    def test_spam_long_digit_run(self, classifier):
        assert classifier.classify("call me 5551234567").reason == FlagReason.SPAM

    def test_length_ceiling_flags_inappropriate(self, classifier):
        result = classifier.classify(distinct_words(220))
        assert result.verdict == Verdict.FLAG
        assert result.reason == FlagReason.INAPPROPRIATE
        assert result.severity == Severity.LOW

    def test_server_ceiling_is_higher(self):
        text = distinct_words(220)  # 989 chars
        assert Classifier(max_length=800).classify(text).reason == FlagReason.INAPPROPRIATE
        assert Classifier(max_length=1000).classify(text).verdict == Verdict.ALLOW


class TestClassifierMatching:
    """Lexicon matching is word-bounded and case-insensitive."""

    def test_substring_does_not_match(self, classifier):
        # "hell" inside "hello", "die" inside "diet"
        assert classifier.classify("hello, my diet is going well").verdict == Verdict.ALLOW

    def test_case_insensitive(self, classifier):
        assert classifier.classify("You Are So STUPID").severity == Severity.LOW

    def test_fullwidth_characters_normalized(self, classifier):
        # NFKC folds fullwidth letters to ASCII
        assert classifier.classify("ｄａｍｎ it").reason == FlagReason.PROFANITY

    @given(prefix=st.sampled_from(["", "well ", "ok so "]), word=st.sampled_from(Classifier.SEVERE_WORDS),
           extra=st.sampled_from(["", " damn", " https://x.io", " trash"]))
    @settings(max_examples=50)
    def test_severe_always_auto_deletes(self, prefix, word, extra):
        result = Classifier().classify(f"{prefix}{word}{extra}")
        assert result.verdict == Verdict.AUTO_DELETE
        assert result.severity == Severity.HIGH

    @given(word=st.sampled_from(Classifier.MILD_WORDS))
    @settings(max_examples=20)
    def test_mild_only_flags_low(self, word):
        result = Classifier().classify(f"that is {word}")
        assert result.verdict == Verdict.FLAG
        assert result.severity == Severity.LOW


class TestClassifierRules:
    """Stored moderation rules."""

    def test_from_rules_skips_disabled_stage(self):
        rules = default_rules()
        for rule in rules:
            if rule.id == Classifier.MILD_RULE:
                rule.enabled = False
        classifier = Classifier.from_rules(rules)
        assert classifier.classify("that was dumb").verdict == Verdict.ALLOW
        assert classifier.classify("total garbage").severity == Severity.MEDIUM

    def test_from_rules_uses_length_value(self):
        classifier = Classifier.from_rules(default_rules(max_length=20))
        assert classifier.max_length == 20
        assert classifier.classify("a perfectly fine but long message").reason == FlagReason.INAPPROPRIATE

    def test_explicit_max_length_wins(self):
        assert Classifier.from_rules(default_rules(max_length=20), max_length=800).max_length == 800

    def test_keyword_rule_value_replaces_lexicon(self):
        rules = default_rules()
        for rule in rules:
            if rule.id == Classifier.MILD_RULE:
                rule.value = "darn|heck"
        classifier = Classifier.from_rules(rules)
        assert classifier.classify("oh heck").severity == Severity.LOW
        assert classifier.classify("that was dumb").verdict == Verdict.ALLOW

    @pytest.mark.asyncio
    async def test_initialize_rules_seeds_once(self, store):
        seeded = await initialize_rules(store)
        assert {r.id for r in seeded} == {r.id for r in default_rules()}

        await store.write(f"moderationRules/{Classifier.MILD_RULE}", {"enabled": False}, merge=True)
        reloaded = await initialize_rules(store)
        mild = next(r for r in reloaded if r.id == Classifier.MILD_RULE)
        assert mild.enabled is False

    @pytest.mark.asyncio
    async def test_load_rules_skips_malformed(self, store):
        await initialize_rules(store)
        await store.write("moderationRules/broken", {"name": "no type"})
        rules = await load_rules(store)
        assert "broken" not in {r.id for r in rules}
