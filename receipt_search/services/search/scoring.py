"""
Scoring functions for the three search branches.

- cosine_similarity(): semantic branch, 1 - cosine distance
- trigram_similarity(): pg_trgm compatible similarity
- keyword_rank(): full-text rank normalized to [0, 1]
- text_match_score(): keyword component of the text-only search

All functions are pure and return floats in [0, 1] (cosine can be negative
for opposed vectors, it is clamped to 0 for ranking).
"""

import re
from typing import Dict, FrozenSet, List, Optional, Sequence, Set

import numpy as np

_WORD_RE = re.compile(r"[^\W_]+", re.UNICODE)

ENGLISH_STOPWORDS: FrozenSet[str] = frozenset({
    "a", "about", "after", "again", "all", "am", "an", "and", "any", "are", "as", "at",
    "be", "because", "been", "before", "being", "between", "both", "but", "by",
    "can", "did", "do", "does", "doing", "down", "during", "each", "few", "for", "from",
    "further", "had", "has", "have", "having", "he", "her", "here", "hers", "him", "his",
    "how", "i", "if", "in", "into", "is", "it", "its", "just", "me", "more", "most", "my",
    "no", "nor", "not", "now", "of", "off", "on", "once", "only", "or", "other", "our",
    "out", "over", "own", "same", "she", "should", "so", "some", "such", "than", "that",
    "the", "their", "them", "then", "there", "these", "they", "this", "those", "through",
    "to", "too", "under", "until", "up", "very", "was", "we", "were", "what", "when",
    "where", "which", "while", "who", "whom", "why", "will", "with", "you", "your",
})

# Longest suffix first
_SUFFIXES = (
    ("ational", "ate"),
    ("ization", "ize"),
    ("iveness", "ive"),
    ("fulness", "ful"),
    ("ements", "ement"),
    ("ations", "ate"),
    ("ation", "ate"),
    ("ingly", ""),
    ("ness", ""),
    ("sses", "ss"),
    ("ies", "y"),
    ("ing", ""),
    ("edly", ""),
    ("ed", ""),
    ("ly", ""),
    ("s", ""),
)


def words(text: Optional[str]) -> List[str]:
    """Lowercased alphanumeric runs of `text`."""
    if not text:
        return []
    return [match.group(0).lower() for match in _WORD_RE.finditer(text)]


def stem(word: str) -> str:
    """
    Light English suffix stripping.

    Keeps at least three characters of the stem so that short words such as
    "bus" or "gas" are not mangled. "ss" endings are never stripped.
    """
    if len(word) <= 3 or word.endswith("ss"):
        return word
    for suffix, replacement in _SUFFIXES:
        if word.endswith(suffix) and len(word) - len(suffix) + len(replacement) >= 3:
            return word[: len(word) - len(suffix)] + replacement
    return word


def lexemes(text: Optional[str]) -> List[str]:
    """Stemmed tokens with stopwords removed, in document order."""
    return [stem(word) for word in words(text) if word not in ENGLISH_STOPWORDS]


def normalize_text(text: Optional[str]) -> str:
    """Casefolded text with runs of whitespace collapsed."""
    return " ".join((text or "").split()).casefold()


# =========================================================
# Semantic
# =========================================================

def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors (0.0 when either is all zeros)."""
    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)

    if a_arr.shape != b_arr.shape:
        raise ValueError(f"Vector dimensions differ: {a_arr.shape[0]} != {b_arr.shape[0]}")

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


# =========================================================
# Trigram
# =========================================================

def trigrams(text: Optional[str]) -> Set[str]:
    """
    pg_trgm trigram set.

    Every word is lowercased and padded with two spaces in front and one
    behind, so "cafe" yields "  c", " ca", "caf", "afe", "fe ".
    """
    result: Set[str] = set()
    for word in words(text):
        padded = f"  {word} "
        for start in range(len(padded) - 2):
            result.add(padded[start:start + 3])
    return result


def trigram_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Shared trigrams over the union of both trigram sets."""
    left = trigrams(a)
    right = trigrams(b)
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


# =========================================================
# Keyword
# =========================================================

def _shortest_cover(positions: Dict[str, List[int]]) -> int:
    """Length of the smallest token window containing every term."""
    events = sorted((pos, term) for term, term_positions in positions.items() for pos in term_positions)
    needed = len(positions)
    counts: Dict[str, int] = {}
    best = len(events) + max(pos for pos, _ in events) + 1
    left = 0

    for right_pos, term in events:
        counts[term] = counts.get(term, 0) + 1
        while len(counts) == needed:
            left_pos, left_term = events[left]
            best = min(best, right_pos - left_pos + 1)
            counts[left_term] -= 1
            if counts[left_term] == 0:
                del counts[left_term]
            left += 1

    return best


def keyword_rank(query: Optional[str], document: Optional[str]) -> float:
    """
    Full-text rank of `document` for `query`, in [0, 1].

    - Exact (case and whitespace insensitive) equality scores 1.0
    - Every query lexeme must occur in the document, otherwise 0.0
    - Otherwise half proximity (how tightly the terms cluster) and half
      coverage (share of the document made of query terms)
    """
    normalized_query = normalize_text(query)
    if not normalized_query:
        return 0.0
    if normalized_query == normalize_text(document):
        return 1.0

    query_terms = set(lexemes(query))
    if not query_terms:
        return 0.0

    doc_terms = lexemes(document)
    if not doc_terms:
        return 0.0

    positions: Dict[str, List[int]] = {}
    for index, term in enumerate(doc_terms):
        if term in query_terms:
            positions.setdefault(term, []).append(index)

    if len(positions) < len(query_terms):
        return 0.0

    proximity = len(query_terms) / _shortest_cover(positions)
    coverage = sum(len(hits) for hits in positions.values()) / len(doc_terms)
    return min(1.0, 0.5 * proximity + 0.5 * coverage)


def text_match_score(query: Optional[str], text: Optional[str]) -> float:
    """
    Keyword component used by the text-only search.

    1.0 when the whole query occurs in the text, 0.7 when its first or last
    word does, otherwise keyword_rank().
    """
    normalized_query = normalize_text(query)
    normalized_text = normalize_text(text)
    if not normalized_query or not normalized_text:
        return 0.0

    if normalized_query in normalized_text:
        return 1.0

    query_words = words(query)
    text_words = set(words(text))
    if query_words and (query_words[0] in text_words or query_words[-1] in text_words):
        return 0.7

    return keyword_rank(query, text)
