"""
Lexicon sentiment and keyword extraction.
Token-level word lists. This is not a statistical
or ML sentiment model and should be read as a rough signal only.
"""

import re
import string
from collections import Counter
from typing import Any, Iterable, List, Tuple

from chatmod.models.analytics import KeywordCount, Sentiment

POSITIVE_WORDS = frozenset({
    'good', 'great', 'awesome', 'excellent', 'love', 'like',
    'happy', 'amazing', 'wonderful', 'fantastic',
})

NEGATIVE_WORDS = frozenset({
    'bad', 'terrible', 'awful', 'hate', 'dislike', 'sad',
    'angry', 'horrible', 'disgusting', 'annoying',
})

STOP_WORDS = frozenset({
    'the', 'is', 'at', 'which', 'on', 'and', 'a', 'to', 'are', 'as', 'was',
    'were', 'been', 'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will',
    'would', 'could', 'should', 'may', 'might', 'must', 'can', 'shall', 'of',
    'in', 'for', 'with', 'by', 'from', 'up', 'about', 'into', 'through',
    'during', 'before', 'after', 'above', 'below', 'between', 'among',
    'under', 'over', 'out', 'off', 'down', 'than', 'but', 'or', 'nor', 'so',
    'yet', 'if', 'then', 'else', 'when', 'where', 'why', 'how', 'what',
    'who', 'whom', 'whose', 'that', 'this', 'these', 'those', 'i', 'you',
    'he', 'she', 'it', 'we', 'they', 'me', 'him', 'her', 'us', 'them', 'my',
    'your', 'his', 'its', 'our', 'their',
})

_NON_WORD = re.compile(r'[^\w\s]')


def analyze_sentiment(text: Any) -> Sentiment:
    """
    Score = positive matches - negative matches.
    Comparative = score / token count. Non-text input is neutral.
    """
    if not isinstance(text, str):
        return Sentiment()

    tokens = text.lower().split()
    if not tokens:
        return Sentiment()

    positive: List[str] = []
    negative: List[str] = []
    for token in tokens:
        word = token.strip(string.punctuation)
        if word in POSITIVE_WORDS:
            positive.append(word)
        elif word in NEGATIVE_WORDS:
            negative.append(word)

    score = len(positive) - len(negative)
    return Sentiment(
        score=score,
        comparative=score / len(tokens),
        positive=positive,
        negative=negative,
    )


def extract_keywords(text: Any) -> List[str]:
    """Lower-cased content words with punctuation, short tokens and stop words removed."""
    if not isinstance(text, str):
        return []
    cleaned = _NON_WORD.sub('', text.lower())
    return [w for w in cleaned.split() if len(w) > 2 and w not in STOP_WORDS]


def rank_words(texts: Iterable[str], limit: int) -> List[Tuple[str, int]]:
    """Most frequent keywords across texts; ties keep first-seen order."""
    counts: Counter = Counter()
    for text in texts:
        counts.update(extract_keywords(text))
    # Counter preserves insertion order and most_common is a stable sort
    return counts.most_common(limit)


def top_keywords(texts: Iterable[str], limit: int = 10) -> List[KeywordCount]:
    return [KeywordCount(word=w, count=c) for w, c in rank_words(texts, limit)]
