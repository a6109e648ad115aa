"""
Tokenizer shared by the document store, index builder and query engine.

Policy (fixed, never tuned per corpus):
  - lower-case the input
  - split on every non-alphanumeric character (``_`` is a boundary)
  - drop tokens shorter than ``MIN_TOKEN_LENGTH``
  - drop the English stop words in ``STOP_WORDS``

No stemming or lemmatization is applied.  Changing any of the above changes
scores, so ``TOKENIZER_VERSION`` is part of the index cache fingerprint.
"""

from __future__ import annotations

import re
from collections import Counter

TOKENIZER_VERSION = "1"

MIN_TOKEN_LENGTH = 2

_SPLIT_RE = re.compile(r"[\W_]+")

STOP_WORDS: frozenset[str] = frozenset({
    "a", "about", "after", "all", "also", "an", "and", "any", "are", "as",
    "at", "be", "been", "but", "by", "can", "could", "do", "does", "each",
    "for", "from", "had", "has", "have", "he", "her", "his", "how", "if",
    "in", "into", "is", "it", "its", "may", "more", "most", "no", "not",
    "of", "on", "one", "only", "or", "other", "our", "she", "should", "so",
    "some", "such", "than", "that", "the", "their", "them", "then", "there",
    "these", "they", "this", "those", "to", "too", "up", "us", "was", "we",
    "were", "what", "when", "where", "which", "while", "who", "will", "with",
    "would", "you", "your",
})


def tokenize(text: str) -> list[str]:
    """Return the index terms of *text* in order of appearance."""
    return [
        tok for tok in _SPLIT_RE.split(text.lower())
        if len(tok) >= MIN_TOKEN_LENGTH and tok not in STOP_WORDS
    ]


def term_counts(text: str) -> Counter:
    """Return the token multiset of *text*."""
    return Counter(tokenize(text))
