"""Search Quality Measure (SQM).

For every source, SQM is Spearman's rank correlation between the order in
which the source ranked the documents a user interacted with and the order
of those documents by derived importance. The stored value is a running
average over sessions.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from metasearch.ranking.types import ScoredDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SQMReport:
    correlations: dict[str, float] = field(default_factory=dict)
    insufficient_data: bool = False


def spearman_rho(first: Sequence[int], second: Sequence[int]) -> float:
    """Spearman's rho for two rankings of the same n >= 2 items.

    ``first[i]`` and ``second[i]`` are the 1-based ranks of item i.
    """
    if len(first) != len(second):
        raise ValueError("Rankings must have the same length")
    n = len(first)
    if n < 2:
        raise ValueError("Spearman correlation needs at least 2 items")
    sum_d2 = sum((a - b) ** 2 for a, b in zip(first, second))
    return 1 - (6 * sum_d2) / (n * (n**2 - 1))


def _source_rho(preference: Sequence[ScoredDocument], source: str) -> float | None:
    # ``preference`` is already sorted by importance, so list position is the
    # preference rank within the subset.
    subset = [item for item in preference if source in item.document.source_ranks]
    if len(subset) < 2:
        return None
    by_native = sorted(
        range(len(subset)),
        key=lambda i: subset[i].document.source_ranks[source],
    )
    native_ranks = [0] * len(subset)
    for position, index in enumerate(by_native, start=1):
        native_ranks[index] = position
    preference_ranks = list(range(1, len(subset) + 1))
    return spearman_rho(native_ranks, preference_ranks)


def compute_sqm(preference: Sequence[ScoredDocument]) -> SQMReport:
    """Correlate each source's native order with the preference ranking.

    Args:
        preference: Scored documents sorted by descending importance, as
            produced by ``build_preference_ranking``.

    Returns:
        Correlations for every source that ranked at least two of the scored
        documents. With fewer than two scored documents the report is flagged
        ``insufficient_data`` and carries no correlations.
    """
    if len(preference) < 2:
        logger.info(
            "SQM skipped: %d document(s) with feedback, need at least 2",
            len(preference),
        )
        return SQMReport(insufficient_data=True)

    sources: list[str] = []
    for item in preference:
        for source in item.document.source_ranks:
            if source not in sources:
                sources.append(source)

    correlations: dict[str, float] = {}
    for source in sources:
        rho = _source_rho(preference, source)
        if rho is not None:
            correlations[source] = rho
            logger.debug("SQM rho for %s: %.4f", source, rho)
    return SQMReport(correlations=correlations)


def running_average(
    old_score: float, old_count: int, rho: float
) -> tuple[float, int]:
    """Fold one more observation into a streaming mean.

    Returns ``(new_score, new_count)``; the first observation becomes the mean.
    """
    new_count = old_count + 1
    if old_count <= 0:
        return rho, 1
    return old_score + (rho - old_score) / new_count, new_count
