"""Deduplication of per-source result lists into canonical documents.

Two entries describe the same document iff their normalized URLs are equal.
The merged set keeps first-seen order, which every aggregation strategy uses
as its stable tie-break.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from metasearch.ranking.config import MAX_RESULTS_PER_SOURCE
from metasearch.ranking.types import CanonicalDocument, SourceResult

logger = logging.getLogger(__name__)


def normalize_url(url: str) -> str:
    """Map a URL to its document key: trailing slashes stripped, case-folded."""
    return url.strip().rstrip("/").casefold()


def deduplicate_results(
    source_results: Iterable[SourceResult],
) -> list[CanonicalDocument]:
    """Merge entries from every source into one record per document.

    Each record carries the native rank of every source that reported it.
    Title and snippet come from the first source that supplies a non-empty
    value. A source listing the same document twice keeps its better rank.
    """
    merged: dict[str, CanonicalDocument] = {}
    entry_count = 0

    for result in source_results:
        for entry in result.entries:
            entry_count += 1
            key = normalize_url(entry.url)
            doc = merged.get(key)
            if doc is None:
                merged[key] = CanonicalDocument(
                    normalized_key=key,
                    url=entry.url,
                    title=entry.title,
                    snippet=entry.snippet,
                    source_ranks={entry.source_name: entry.native_rank},
                )
                continue

            previous = doc.source_ranks.get(entry.source_name)
            if previous is None or entry.native_rank < previous:
                doc.source_ranks[entry.source_name] = entry.native_rank
            if not doc.title and entry.title:
                doc.title = entry.title
            if not doc.snippet and entry.snippet:
                doc.snippet = entry.snippet

    documents = list(merged.values())
    logger.debug(
        "Deduplicated %d entries into %d documents", entry_count, len(documents)
    )
    return documents


def active_sources(source_results: Iterable[SourceResult]) -> list[str]:
    """Names of the sources that reported at least one result, in input order."""
    names: list[str] = []
    for result in source_results:
        if result.entries and result.source_name not in names:
            names.append(result.source_name)
    return names


def rank_in(
    doc: CanonicalDocument, source: str, n: int = MAX_RESULTS_PER_SOURCE
) -> int:
    """Native rank of ``doc`` in ``source``, or ``n + 1`` when not reported."""
    return doc.source_ranks.get(source, n + 1)


def ranks_across(
    doc: CanonicalDocument, sources: Sequence[str], n: int = MAX_RESULTS_PER_SOURCE
) -> list[int]:
    return [rank_in(doc, source, n) for source in sources]
