"""Personalised learning index.

Documents a user found important are remembered per (user, document) with a
smoothed score and the queries they were found for. On later searches the
index answers as one more source (see ``metasearch.sources.learned_source``).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from metasearch.ranking.config import LEARNING_ALPHA
from metasearch.ranking.types import CanonicalDocument, LearningIndexEntry

logger = logging.getLogger(__name__)


def smooth_score(old_score: float, importance: float, alpha: float = LEARNING_ALPHA) -> float:
    """Exponential smoothing: ``alpha * importance + (1 - alpha) * old``."""
    return alpha * importance + (1 - alpha) * old_score


def merge_entry(
    existing: LearningIndexEntry | None,
    user_id: str,
    document: CanonicalDocument,
    importance: float,
    query_text: str = "",
    alpha: float = LEARNING_ALPHA,
) -> LearningIndexEntry | None:
    """Fold one importance observation into the user's index entry.

    Args:
        existing: The stored entry for (user, document), if any.
        user_id: Owner of the index.
        document: The document the observation is about.
        importance: Derived importance for this session.
        query_text: The query the document was found for.
        alpha: Smoothing factor in (0, 1).

    Returns:
        The new or updated entry, or ``None`` when ``importance <= 0``
        (nothing is learned from unimportant documents).
    """
    if importance <= 0:
        return None

    query = query_text.strip()
    if existing is None:
        return LearningIndexEntry(
            user_id=user_id,
            url_key=document.normalized_key,
            url=document.url,
            title=document.title,
            snippet=document.snippet,
            learned_score=importance,
            matched_queries={query} if query else set(),
        )

    queries = set(existing.matched_queries)
    if query:
        queries.add(query)
    return LearningIndexEntry(
        user_id=existing.user_id,
        url_key=existing.url_key,
        url=document.url or existing.url,
        title=document.title or existing.title,
        snippet=document.snippet or existing.snippet,
        learned_score=smooth_score(existing.learned_score, importance, alpha),
        matched_queries=queries,
    )


def query_tokens(text: str) -> set[str]:
    return {token for token in text.lower().split() if token}


def matches_query(entry: LearningIndexEntry, query: str) -> bool:
    """True when any query the entry was learned for shares a token with ``query``."""
    wanted = query_tokens(query)
    if not wanted:
        return False
    return any(wanted & query_tokens(matched) for matched in entry.matched_queries)


def relevant_entries(
    entries: Iterable[LearningIndexEntry], query: str
) -> list[LearningIndexEntry]:
    """Entries relevant to ``query``, keeping the input order."""
    return [entry for entry in entries if matches_query(entry, query)]
