"""
Rate/quality heuristics shared by the classifier and pre-send validation.
Spam-pattern, repetition and length checks, basic validation and HTML sanitization.
"""

import re
import unicodedata
from typing import Iterable, List, Optional, Pattern

from chatmod.lib.errors import ValidationError

# Spam patterns used by the classifier
REPEATED_CHARS = re.compile(r'(.)\1{5,}')                 # 6+ identical characters
ALL_CAPS_LINE = re.compile(r'^[A-Z\s!]{15,}$')            # case-sensitive on raw text
REPEATED_PHRASE = re.compile(r'\b(\w+(?:\s+\w+){0,2})(?:\s+\1\b){2,}', re.IGNORECASE)
EMBEDDED_URL = re.compile(r'https?://\S+', re.IGNORECASE)
LONG_DIGIT_RUN = re.compile(r'\b\d{10,}\b')

SPAM_PATTERNS: List[Pattern] = [
    REPEATED_CHARS,
    ALL_CAPS_LINE,
    REPEATED_PHRASE,
    EMBEDDED_URL,
    LONG_DIGIT_RUN,
]

# Stricter client-side screening
SCREEN_WORDS = ['damn', 'hell', 'crap', 'stupid', 'idiot', 'moron', 'dumb', 'hate']
SCREEN_SPAM_PATTERNS: List[Pattern] = [
    re.compile(r'(.)\1{4,}'),
    re.compile(r'^[A-Z\s!]{10,}$'),
    EMBEDDED_URL,
]
SCREEN_MAX_WORDS = 20

_HTML_ESCAPES = {
    '<': '&lt;',
    '>': '&gt;',
    '"': '&quot;',
    "'": '&#x27;',
    '/': '&#x2F;',
}


def normalize_text(text: str) -> str:
    """NFKC-normalize and case-fold for lexicon matching."""
    return unicodedata.normalize('NFKC', text).casefold()


def compile_lexicon(words: Iterable[str]) -> Optional[Pattern]:
    """Word-boundary alternation over a word list, None for an empty list."""
    words = [normalize_text(w) for w in words if w]
    if not words:
        return None
    # Longest first so multi-word entries win over their prefixes
    alternation = '|'.join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf'\b(?:{alternation})\b')


def find_spam_pattern(text: str, patterns: Optional[List[Pattern]] = None) -> Optional[str]:
    """Source of the first spam pattern that matches, or None."""
    for pattern in patterns if patterns is not None else SPAM_PATTERNS:
        if pattern.search(text):
            return pattern.pattern
    return None


def exceeds_length(text: str, max_length: int) -> bool:
    return len(text) > max_length


def validate_message(text: str, max_length: int = 500) -> str:
    """
    Basic pre-send validation: non-blank and within the length bound.
    Returns the text unchanged; raises ValidationError otherwise.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message cannot be empty")
    if len(text) > max_length:
        raise ValidationError(f"Message is too long (max {max_length} characters)")
    return text


_screen_lexicon = compile_lexicon(SCREEN_WORDS)


def screen_message(text: str, max_length: int = 500) -> str:
    """
    Strict client-side screening.
    Rejects mild profanity and spam-looking text on top of basic validation.
    """
    validate_message(text, max_length)

    if _screen_lexicon.search(normalize_text(text)):
        raise ValidationError("Message contains inappropriate content")

    if find_spam_pattern(text, SCREEN_SPAM_PATTERNS) or len(text.split()) >= SCREEN_MAX_WORDS:
        raise ValidationError("Message appears to be spam")

    return text


def sanitize_message(text: str) -> str:
    """Trim and HTML-entity escape < > \" ' /."""
    return ''.join(_HTML_ESCAPES.get(ch, ch) for ch in text.strip())
