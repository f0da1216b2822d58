"""Frequency-based keyword extraction."""

import re
from collections import Counter
from typing import List

_NON_WORD = re.compile(r"[^\w\s\u4e00-\u9fa5]")

MIN_KEYWORD_LENGTH = 3


def extract_keywords(text: str, max_keywords: int = 10) -> List[str]:
    """
    Return the most frequent tokens of at least three characters.

    Text is lowercased and punctuation becomes whitespace. Ties keep the order
    in which tokens first appear.
    """
    if max_keywords <= 0 or not text:
        return []

    words = [
        word
        for word in _NON_WORD.sub(" ", text.lower()).split()
        if len(word) >= MIN_KEYWORD_LENGTH
    ]
    # Counter preserves insertion order and sorted() is stable
    counts = Counter(words)
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [word for word, _ in ranked[:max_keywords]]


def query_keywords(query: str) -> List[str]:
    """Split a search query on whitespace, keeping tokens longer than two characters."""
    return [word for word in query.split() if len(word) >= MIN_KEYWORD_LENGTH]
