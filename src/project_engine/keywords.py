"""
Title tokenizers used by the detection strategies.

Each strategy tokenizes page titles slightly differently; the three
variants are kept side by side so their rules stay explicit.
"""

import re
from collections import Counter
from typing import Iterable


CANDIDATE_STOP_WORDS = frozenset({
    "the", "and", "for", "with", "this", "that", "from", "have", "been",
    "will", "your", "what", "when", "where", "which", "their", "there",
    "would", "could", "should", "about", "other", "more", "than", "into",
})

CLUSTER_COMMON_WORDS = frozenset({
    "the", "and", "for", "with", "that", "this", "from", "have", "been",
    "will", "your", "their", "what", "which", "when", "where", "how",
    "page", "site", "home", "web", "http", "https", "www", "html",
})

SUGGESTION_STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "can",
})

_CLUSTER_SPLIT = re.compile(r"[\s\-_.,;:!?()\[\]{}'\"]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def title_keywords(title: str) -> list[str]:
    """
    Candidate keywords from a page title.

    Whitespace split, lowercased, longer than three characters, stop words
    removed, first occurrence kept.
    """
    seen: list[str] = []
    for word in title.lower().split():
        if len(word) > 3 and word not in CANDIDATE_STOP_WORDS and word not in seen:
            seen.append(word)
    return seen


def cluster_title_words(title: str) -> list[str]:
    """Words counted towards a cluster's keyword frequencies."""
    return [
        word
        for word in _CLUSTER_SPLIT.split(title.lower())
        if len(word) > 3 and word not in CLUSTER_COMMON_WORDS
    ]


def top_keywords(titles: Iterable[str], limit: int) -> list[str]:
    """Most frequent cluster words; ties keep first-seen order."""
    counts: Counter[str] = Counter()
    for title in titles:
        if title:
            counts.update(cluster_title_words(title))
    return [word for word, _ in counts.most_common(limit)]


def significant_words(text: str) -> list[str]:
    """Significant words for suggestion matching (duplicates kept)."""
    return [
        word
        for word in _NON_ALNUM.split(text.lower())
        if len(word) > 2 and word not in SUGGESTION_STOP_WORDS
    ]
