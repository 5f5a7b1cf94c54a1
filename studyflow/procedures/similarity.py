"""
Text similarity metrics for procedure matching.

The mapper blends three measures into one score:

    0.3 × Jaccard over word sets (stopwords removed)
    0.4 × cosine over character n-gram counts
    0.3 × normalized Levenshtein similarity

All measures work on ``normalize_text`` output and return values in [0, 1].
"""

import math
import re
from collections import Counter
from typing import List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

STOPWORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for',
    'of', 'with', 'by', 'from', 'as', 'is', 'was', 'are', 'were', 'been',
    'be', 'have', 'has', 'had', 'do', 'does', 'did', 'will', 'would', 'should',
    'could', 'may', 'might', 'must', 'can', 'this', 'that', 'these', 'those',
})

DEFAULT_WEIGHTS: Tuple[float, float, float] = (0.3, 0.4, 0.3)

_PUNCT_RE = re.compile(r"[^\w\s]")


def normalize_text(text: str) -> str:
    """Lowercase, punctuation → space, collapse whitespace."""
    text = _PUNCT_RE.sub(" ", (text or "").lower())
    return " ".join(text.split())


def tokenize(text: str) -> List[str]:
    """Normalized word tokens without stopwords."""
    return [w for w in normalize_text(text).split() if w not in STOPWORDS]


def char_ngrams(text: str, n: int = 2) -> Counter:
    """Character n-gram counts of the normalized text (spaces included)."""
    norm = normalize_text(text)
    if not norm:
        return Counter()
    if len(norm) < n:
        return Counter([norm])
    return Counter(norm[i:i + n] for i in range(len(norm) - n + 1))


def jaccard_similarity(text1: str, text2: str) -> float:
    words1, words2 = set(tokenize(text1)), set(tokenize(text2))
    if not words1 and not words2:
        return 1.0
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def ngram_cosine_similarity(text1: str, text2: str, n: int = 2) -> float:
    grams1, grams2 = char_ngrams(text1, n), char_ngrams(text2, n)
    if not grams1 or not grams2:
        return 0.0
    dot = sum(count * grams2[gram] for gram, count in grams1.items())
    mag1 = math.sqrt(sum(c * c for c in grams1.values()))
    mag2 = math.sqrt(sum(c * c for c in grams2.values()))
    return dot / (mag1 * mag2)


def levenshtein_similarity(text1: str, text2: str) -> float:
    """``1 - distance / max(len)``; two empty strings are identical."""
    norm1, norm2 = normalize_text(text1), normalize_text(text2)
    if not norm1 and not norm2:
        return 1.0
    return Levenshtein.normalized_similarity(norm1, norm2)


def combined_similarity(
    text1: str,
    text2: str,
    weights: Optional[Tuple[float, float, float]] = None,
    ngram_size: int = 2,
) -> float:
    """Weighted blend of Jaccard, n-gram cosine and Levenshtein similarity."""
    w_jaccard, w_cosine, w_levenshtein = weights or DEFAULT_WEIGHTS
    return (
        w_jaccard * jaccard_similarity(text1, text2)
        + w_cosine * ngram_cosine_similarity(text1, text2, ngram_size)
        + w_levenshtein * levenshtein_similarity(text1, text2)
    )
