"""Rank aggregation over deduplicated multi-source results.

Seven strategies are available, selected by :class:`AggregationMethod`:

* Borda positional voting,
* Shimura fuzzy ordering (maximin over pairwise preferences),
* modal rank,
* membership function ordering (best single endorsement),
* mean-by-variance,
* Shimura with Ordered Weighted Averaging of pairwise preferences,
* Borda biased by per-source quality (SQM) weights.

Every strategy is a pure function of the documents, the active source list
and (for the biased variant) the source weights. Ties keep the merger's
first-seen order because all sorts are stable.

Shimura and OWA compare every pair of documents, O(n^2 * m) for n documents
and m sources. That is fine for a result page (a few dozen documents).
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from collections.abc import Callable, Mapping, Sequence
from typing import NamedTuple

from metasearch.ranking.config import MAX_RESULTS_PER_SOURCE, MBV_DEVIATION_WEIGHT
from metasearch.ranking.merger import rank_in, ranks_across
from metasearch.ranking.types import AggregationMethod, CanonicalDocument

logger = logging.getLogger(__name__)

ScoreFn = Callable[
    [Sequence[CanonicalDocument], Sequence[str], Mapping[str, float], int],
    list[float],
]


def borda_score(doc: CanonicalDocument, n: int = MAX_RESULTS_PER_SOURCE) -> float:
    """Sum of ``n + 1 - rank`` over the sources that reported ``doc``."""
    return float(sum(n + 1 - rank for rank in doc.source_ranks.values()))


def biased_score(
    doc: CanonicalDocument,
    source_weights: Mapping[str, float],
    n: int = MAX_RESULTS_PER_SOURCE,
) -> float:
    """Borda score with each source's vote scaled by its quality weight.

    Sources without a known weight count with 1.0.
    """
    return sum(
        source_weights.get(source, 1.0) * (n + 1 - rank)
        for source, rank in doc.source_ranks.items()
    )


def modal_rank(
    doc: CanonicalDocument, sources: Sequence[str], n: int = MAX_RESULTS_PER_SOURCE
) -> int:
    """Most frequent rank across ``sources``; ties go to the better rank."""
    counts = Counter(ranks_across(doc, sources, n))
    if not counts:
        return n + 1
    return min(counts, key=lambda rank: (-counts[rank], rank))


def mfo_score(
    doc: CanonicalDocument, sources: Sequence[str], n: int = MAX_RESULTS_PER_SOURCE
) -> float:
    """Highest per-source membership ``(n + 1 - rank) / n``."""
    return max(
        ((n + 1 - rank_in(doc, source, n)) / n for source in sources), default=0.0
    )


def mbv_score(
    doc: CanonicalDocument, sources: Sequence[str], n: int = MAX_RESULTS_PER_SOURCE
) -> float:
    """Negated ``mean - k * stddev`` of the document's ranks (higher wins)."""
    ranks = ranks_across(doc, sources, n)
    if not ranks:
        return -float(n + 1)
    mean = sum(ranks) / len(ranks)
    variance = sum((rank - mean) ** 2 for rank in ranks) / len(ranks)
    return -(mean - MBV_DEVIATION_WEIGHT * math.sqrt(variance))


def owa_weights(m: int) -> list[float]:
    """Linearly decreasing OWA weights ``2(m+1-j) / (m(m+1))``, j = 1..m."""
    if m <= 0:
        return []
    return [2 * (m + 1 - j) / (m * (m + 1)) for j in range(1, m + 1)]


def _pairwise_wins(
    a: CanonicalDocument, b: CanonicalDocument, sources: Sequence[str], n: int
) -> list[int]:
    return [1 if rank_in(a, s, n) <= rank_in(b, s, n) else 0 for s in sources]


def _maximin(
    docs: Sequence[CanonicalDocument],
    pair_value: Callable[[CanonicalDocument, CanonicalDocument], float],
) -> list[float]:
    scores: list[float] = []
    for i, a in enumerate(docs):
        worst = min(
            (pair_value(a, b) for j, b in enumerate(docs) if i != j), default=1.0
        )
        scores.append(worst)
    return scores


def _borda_scores(docs, sources, weights, n) -> list[float]:
    return [borda_score(doc, n) for doc in docs]


def _shimura_scores(docs, sources, weights, n) -> list[float]:
    m = len(sources)
    return _maximin(docs, lambda a, b: sum(_pairwise_wins(a, b, sources, n)) / m)


def _modal_scores(docs, sources, weights, n) -> list[float]:
    return [float(modal_rank(doc, sources, n)) for doc in docs]


def _mfo_scores(docs, sources, weights, n) -> list[float]:
    return [mfo_score(doc, sources, n) for doc in docs]


def _mbv_scores(docs, sources, weights, n) -> list[float]:
    return [mbv_score(doc, sources, n) for doc in docs]


def _owa_scores(docs, sources, weights, n) -> list[float]:
    owa = owa_weights(len(sources))

    def pair_value(a: CanonicalDocument, b: CanonicalDocument) -> float:
        wins = sorted(_pairwise_wins(a, b, sources, n), reverse=True)
        return sum(w * win for w, win in zip(owa, wins))

    return _maximin(docs, pair_value)


def _biased_scores(docs, sources, weights, n) -> list[float]:
    return [biased_score(doc, weights, n) for doc in docs]


class _Strategy(NamedTuple):
    score: ScoreFn
    higher_is_better: bool
    needs_sources: bool


_STRATEGIES: dict[AggregationMethod, _Strategy] = {
    AggregationMethod.BORDA: _Strategy(_borda_scores, True, False),
    AggregationMethod.SHIMURA: _Strategy(_shimura_scores, True, True),
    AggregationMethod.MODAL: _Strategy(_modal_scores, False, True),
    AggregationMethod.MFO: _Strategy(_mfo_scores, True, True),
    AggregationMethod.MBV: _Strategy(_mbv_scores, True, True),
    AggregationMethod.OWA: _Strategy(_owa_scores, True, True),
    AggregationMethod.BIASED: _Strategy(_biased_scores, True, False),
}


def resolve_method(name: str | AggregationMethod | None) -> AggregationMethod:
    """Map a user-supplied method name to a strategy.

    Missing or unrecognised names resolve to Borda. Unrecognised names are
    logged as a warning rather than rejected.
    """
    if name is None or name == "":
        return AggregationMethod.BORDA
    try:
        return AggregationMethod(str(name).strip().lower())
    except ValueError:
        logger.warning("Unknown aggregation method %r, falling back to borda", name)
        return AggregationMethod.BORDA


def _select_strategy(
    method: str | AggregationMethod | None, sources: Sequence[str]
) -> tuple[AggregationMethod, _Strategy]:
    resolved = resolve_method(method)
    if _STRATEGIES[resolved].needs_sources and not sources:
        resolved = AggregationMethod.BORDA
    return resolved, _STRATEGIES[resolved]


def aggregate_with_scores(
    documents: Sequence[CanonicalDocument],
    method: str | AggregationMethod | None,
    active_sources: Sequence[str],
    source_weights: Mapping[str, float] | None = None,
    n: int = MAX_RESULTS_PER_SOURCE,
) -> list[tuple[CanonicalDocument, float]]:
    """Like :func:`aggregate`, paired with the score each document was sorted by.

    For the modal strategy the score is the modal rank (lower is better);
    for every other strategy higher is better.
    """
    if not documents:
        return []

    resolved, strategy = _select_strategy(method, active_sources)
    scores = strategy.score(documents, active_sources, source_weights or {}, n)
    order = sorted(
        range(len(documents)),
        key=lambda i: scores[i],
        reverse=strategy.higher_is_better,
    )
    logger.debug(
        "Aggregated %d documents from %d sources with %s",
        len(order),
        len(active_sources),
        resolved.value,
    )
    return [(documents[i], scores[i]) for i in order]


def aggregate(
    documents: Sequence[CanonicalDocument],
    method: str | AggregationMethod | None,
    active_sources: Sequence[str],
    source_weights: Mapping[str, float] | None = None,
    n: int = MAX_RESULTS_PER_SOURCE,
) -> list[CanonicalDocument]:
    """Order ``documents`` with the selected aggregation strategy.

    Args:
        documents: Deduplicated documents in first-seen order.
        method: Strategy name; unknown or missing names mean Borda.
        active_sources: Sources that reported at least one result. Every
            strategy except Borda and biased compares documents across this
            list, treating unreported documents as ranked ``n + 1``.
        source_weights: Per-source quality weights for the biased strategy.
        n: Maximum results per source.

    Returns:
        A new list with the same documents, best first.
    """
    ranked = aggregate_with_scores(
        documents, method, active_sources, source_weights, n
    )
    return [doc for doc, _score in ranked]
