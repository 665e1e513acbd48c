"""Unit tests for importance scoring and the preference ranking."""

from __future__ import annotations

import pytest

from metasearch.ranking.importance import (
    NormalizationBounds,
    build_preference_ranking,
    compute_importance,
    select_representative,
)
from metasearch.ranking.types import FeedbackSignals, WeightProfile

from tests.test_helpers import doc


class TestComputeImportance:
    def test_click_dwell_and_save(self) -> None:
        signals = FeedbackSignals(click_order=1, dwell_time_ms=5000, saved=True)
        bounds = NormalizationBounds.from_signals([signals])
        assert compute_importance(signals, WeightProfile(), bounds) == pytest.approx(3.0)

    def test_no_signals_scores_zero(self) -> None:
        bounds = NormalizationBounds()
        assert compute_importance(FeedbackSignals(), WeightProfile(), bounds) == 0.0

    def test_later_clicks_count_less(self) -> None:
        first = FeedbackSignals(click_order=1)
        second = FeedbackSignals(click_order=2)
        bounds = NormalizationBounds.from_signals([first, second])
        weights = WeightProfile()
        assert compute_importance(first, weights, bounds) == pytest.approx(1.0)
        assert compute_importance(second, weights, bounds) == pytest.approx(0.5)

    def test_weights_scale_each_signal(self) -> None:
        signals = FeedbackSignals(printed=True, emailed=True, copy_paste_chars=40)
        bounds = NormalizationBounds(max_copy_paste_chars=80)
        weights = WeightProfile(w_p=2.0, w_e=0.0, w_c=3.0)
        assert compute_importance(signals, weights, bounds) == pytest.approx(3.5)

    def test_binary_signals_are_bounded_by_weight_sum(self) -> None:
        signals = FeedbackSignals(
            click_order=1,
            dwell_time_ms=10,
            printed=True,
            saved=True,
            bookmarked=True,
            emailed=True,
            copy_paste_chars=5,
        )
        bounds = NormalizationBounds.from_signals([signals])
        assert compute_importance(signals, WeightProfile(), bounds) == pytest.approx(7.0)


class TestNormalizationBounds:
    def test_maxima_are_floored_at_one(self) -> None:
        bounds = NormalizationBounds.from_signals([FeedbackSignals()])
        assert bounds == NormalizationBounds(1, 1, 1)

    def test_maxima_over_all_instances(self) -> None:
        bounds = NormalizationBounds.from_signals(
            [
                FeedbackSignals(click_order=3, dwell_time_ms=100),
                FeedbackSignals(copy_paste_chars=12, dwell_time_ms=400),
            ]
        )
        assert bounds == NormalizationBounds(3, 400, 12)


class TestSelectRepresentative:
    def test_empty(self) -> None:
        assert select_representative([]) is None

    def test_earliest_click_wins(self) -> None:
        late = FeedbackSignals(click_order=4, saved=True)
        early = FeedbackSignals(click_order=2)
        assert select_representative([late, early]) is early

    def test_clicked_beats_unclicked(self) -> None:
        unclicked = FeedbackSignals(bookmarked=True)
        clicked = FeedbackSignals(click_order=7)
        assert select_representative([unclicked, clicked]) is clicked

    def test_late_click_still_beats_unclicked(self) -> None:
        unclicked = FeedbackSignals(saved=True)
        very_late = FeedbackSignals(click_order=999)
        later = FeedbackSignals(click_order=1500)
        assert select_representative([unclicked, very_late]) is very_late
        assert select_representative([unclicked, later, very_late]) is very_late

    def test_first_instance_wins_ties(self) -> None:
        a = FeedbackSignals(dwell_time_ms=10)
        b = FeedbackSignals(dwell_time_ms=20)
        assert select_representative([a, b]) is a


class TestBuildPreferenceRanking:
    def test_orders_by_descending_importance(self) -> None:
        docs = [doc("A", google=1), doc("B", google=2), doc("C", google=3)]
        feedback = {
            "a": [FeedbackSignals(click_order=2)],
            "c": [FeedbackSignals(click_order=1, saved=True)],
        }
        ranking = build_preference_ranking(docs, feedback, WeightProfile())
        assert [item.document.url for item in ranking] == ["C", "A"]
        assert ranking[0].importance == pytest.approx(2.0)
        assert ranking[1].importance == pytest.approx(0.5)

    def test_documents_without_feedback_are_excluded(self) -> None:
        docs = [doc("A", google=1), doc("B", google=2)]
        ranking = build_preference_ranking(docs, {}, WeightProfile())
        assert ranking == []

    def test_zero_importance_documents_are_kept(self) -> None:
        docs = [doc("A", google=1), doc("B", google=2)]
        feedback = {
            "a": [FeedbackSignals()],
            "b": [FeedbackSignals(saved=True)],
        }
        ranking = build_preference_ranking(docs, feedback, WeightProfile())
        assert [(i.document.url, i.importance) for i in ranking] == [
            ("B", 1.0),
            ("A", 0.0),
        ]

    def test_uses_representative_instance(self) -> None:
        docs = [doc("A", google=1, bing=3)]
        feedback = {
            "a": [
                FeedbackSignals(click_order=2),
                FeedbackSignals(click_order=1, dwell_time_ms=100),
            ]
        }
        [item] = build_preference_ranking(docs, feedback, WeightProfile())
        assert item.importance == pytest.approx(2.0)

    def test_equal_importance_keeps_document_order(self) -> None:
        docs = [doc("A", google=1), doc("B", google=2)]
        feedback = {"a": [FeedbackSignals(saved=True)], "b": [FeedbackSignals(saved=True)]}
        ranking = build_preference_ranking(docs, feedback, WeightProfile())
        assert [item.document.url for item in ranking] == ["A", "B"]
