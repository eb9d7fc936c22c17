"""
Contextual snippets around query matches, for result previews.
"""

from typing import List, Optional


def extract_contextual_snippets(
    content_text: Optional[str],
    query_text: Optional[str],
    snippet_length: int = 200,
    max_snippets: int = 3,
) -> List[str]:
    """
    Windows of the content centered on query word occurrences.

    Content and query are split on whitespace; a content word matches when
    it contains a query word (case-insensitive). Each window spans
    `snippet_length // 2` words on both sides of a match and is marked with
    "..." where it stops short of the content boundaries. Without any match
    the first `snippet_length` characters are returned.

    Returns:
        Up to `max_snippets` snippets; empty only for empty content or query.
    """
    if not content_text or not content_text.strip() or not query_text or not query_text.strip():
        return []

    words = content_text.split()
    lowered = [word.lower() for word in words]
    query_words = [word.lower() for word in query_text.split()]

    positions = sorted({
        index
        for index, word in enumerate(lowered)
        if any(query_word in word for query_word in query_words)
    })

    half_window = max(snippet_length // 2, 0)
    snippets: List[str] = []

    for position in positions[:max_snippets]:
        start = max(0, position - half_window)
        end = min(len(words), position + half_window + 1)
        snippet = " ".join(words[start:end])
        if start > 0:
            snippet = "..." + snippet
        if end < len(words):
            snippet = snippet + "..."
        snippets.append(snippet)

    if not snippets:
        snippet = content_text[:snippet_length]
        if len(content_text) > snippet_length:
            snippet += "..."
        snippets.append(snippet)

    return snippets
