"""Document importance from implicit feedback.

Each result a user interacts with carries seven signals: click order (V),
dwell time (T), print (P), save (S), bookmark (B), email (E) and copied
characters (C). Counts are normalised against the session maxima and
combined with the user's weights:

    I(d) = wV*V + wT*T + wP*P + wS*S + wB*B + wE*E + wC*C
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from metasearch.ranking.types import (
    CanonicalDocument,
    FeedbackSignals,
    ScoredDocument,
    WeightProfile,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationBounds:
    """Session maxima used to scale count signals to [0, 1]. Each is >= 1."""

    max_click_order: int = 1
    max_dwell_time_ms: int = 1
    max_copy_paste_chars: int = 1

    @classmethod
    def from_signals(cls, instances: Iterable[FeedbackSignals]) -> NormalizationBounds:
        max_click = max_dwell = max_copy = 1
        for signals in instances:
            max_click = max(max_click, signals.click_order or 0)
            max_dwell = max(max_dwell, signals.dwell_time_ms)
            max_copy = max(max_copy, signals.copy_paste_chars)
        return cls(max_click, max_dwell, max_copy)


def compute_importance(
    signals: FeedbackSignals,
    weights: WeightProfile,
    bounds: NormalizationBounds,
) -> float:
    if signals.click_order is not None:
        v = 1 - (signals.click_order - 1) / bounds.max_click_order
    else:
        v = 0.0
    t = signals.dwell_time_ms / bounds.max_dwell_time_ms
    c = signals.copy_paste_chars / bounds.max_copy_paste_chars

    return (
        weights.w_v * v
        + weights.w_t * t
        + weights.w_p * float(signals.printed)
        + weights.w_s * float(signals.saved)
        + weights.w_b * float(signals.bookmarked)
        + weights.w_e * float(signals.emailed)
        + weights.w_c * c
    )


def _click_key(signals: FeedbackSignals) -> tuple[bool, int]:
    return signals.click_order is None, signals.click_order or 0


def select_representative(
    instances: Sequence[FeedbackSignals],
) -> FeedbackSignals | None:
    """Pick the instance with the earliest click; the first one wins ties.

    A document clicked through several source links has one feedback
    instance per link. Unclicked instances sort after any clicked one.
    """
    if not instances:
        return None
    return min(instances, key=_click_key)


def build_preference_ranking(
    documents: Sequence[CanonicalDocument],
    feedback: Mapping[str, Sequence[FeedbackSignals]],
    weights: WeightProfile,
) -> list[ScoredDocument]:
    """Order the documents a user gave feedback on by descending importance.

    Args:
        documents: Canonical documents of the session.
        feedback: Feedback instances keyed by document ``normalized_key``.
        weights: The user's signal weights.

    Returns:
        Scored documents, most important first. Documents without feedback
        are left out entirely.
    """
    bounds = NormalizationBounds.from_signals(
        signals for instances in feedback.values() for signals in instances
    )

    scored: list[ScoredDocument] = []
    for doc in documents:
        representative = select_representative(feedback.get(doc.normalized_key, ()))
        if representative is None:
            continue
        importance = compute_importance(representative, weights, bounds)
        scored.append(ScoredDocument(document=doc, importance=importance))
        logger.debug("Importance %.4f for %s", importance, doc.url)

    scored.sort(key=lambda item: item.importance, reverse=True)
    return scored
