from metasearch.data.repository import Repository
from metasearch.ranking.types import (
    AggregationMethod,
    CanonicalDocument,
    RankedEntry,
    WeightProfile,
)
import pytest


def _repo(tmp_path):
    return Repository(str(tmp_path / "metasearch.db"))


def _session_with_results(repo, user_id="u1"):
    session_id = repo.create_session(user_id, "python", AggregationMethod.BORDA)
    ids = repo.add_results(
        session_id,
        [
            RankedEntry("google", 1, "https://a.com/", "A", "about a"),
            RankedEntry("google", 2, "https://b.com", "B", ""),
            RankedEntry("bing", 1, "https://A.com", "A again", ""),
        ],
    )
    return session_id, ids


def test_profile_roundtrip(tmp_path):
    repo = _repo(tmp_path)
    assert repo.get_weight_profile("u1") is None

    profile = WeightProfile(w_v=2.0, w_c=0.0, default_method=AggregationMethod.MBV)
    repo.save_weight_profile("u1", profile)
    assert repo.get_weight_profile("u1") == profile

    repo.save_weight_profile("u1", WeightProfile(w_t=3.0))
    stored = repo.get_weight_profile("u1")
    assert stored.w_t == 3.0
    assert stored.w_v == 1.0
    assert stored.default_method == AggregationMethod.BORDA

    repo.close()


def test_session_results_and_aggregated_ranks(tmp_path):
    repo = _repo(tmp_path)
    session_id, ids = _session_with_results(repo)

    session = repo.get_session(session_id)
    assert session["user_id"] == "u1"
    assert session["query"] == "python"
    assert session["aggregation_method"] == "borda"
    assert repo.get_session(session_id + 100) is None

    repo.set_aggregated_ranks(session_id, {"https://a.com": 1, "https://b.com": 2})
    rows = repo.list_session_results(session_id)
    assert [row["id"] for row in rows] == ids
    assert [row["url_key"] for row in rows] == [
        "https://a.com",
        "https://b.com",
        "https://a.com",
    ]
    assert [row["aggregated_rank"] for row in rows] == [1, 2, 1]

    assert repo.get_result(ids[1])["engine"] == "google"
    assert repo.get_result(9999) is None

    repo.close()


def test_feedback_updates_accumulate(tmp_path):
    repo = _repo(tmp_path)
    _, ids = _session_with_results(repo)
    assert repo.get_feedback("u1", ids[0]) is None

    repo.update_feedback("u1", ids[0], lambda s: s.record_dwell(4000))
    repo.update_feedback("u1", ids[0], lambda s: s.mark_saved())
    repo.update_feedback("u1", ids[0], lambda s: s.add_copy_paste(10))
    signals = repo.update_feedback("u1", ids[0], lambda s: s.add_copy_paste(5))

    assert signals.dwell_time_ms == 4000
    assert signals.saved is True
    assert signals.copy_paste_chars == 15
    assert repo.get_feedback("u1", ids[0]) == signals

    # Feedback is per user.
    assert repo.get_feedback("u2", ids[0]) is None

    repo.close()


def test_failed_feedback_update_is_rolled_back(tmp_path):
    repo = _repo(tmp_path)
    _, ids = _session_with_results(repo)
    repo.update_feedback("u1", ids[0], lambda s: s.record_dwell(100))

    with pytest.raises(ValueError):
        repo.update_feedback("u1", ids[0], lambda s: s.record_dwell(-1))

    assert repo.get_feedback("u1", ids[0]).dwell_time_ms == 100
    repo.close()


def test_click_order_follows_session_sequence(tmp_path):
    repo = _repo(tmp_path)
    session_id, ids = _session_with_results(repo)
    other_session, other_ids = _session_with_results(repo)

    assert repo.record_click("u1", ids[1]).click_order == 1
    assert repo.record_click("u1", ids[0]).click_order == 2
    # A new session starts its own sequence.
    assert repo.record_click("u1", other_ids[0]).click_order == 1
    # So does another user.
    assert repo.record_click("u2", ids[2]).click_order == 1

    pairs = repo.list_session_feedback("u1", session_id)
    assert [(r["result_id"], s.click_order) for r, s in pairs] == [
        (ids[0], 2),
        (ids[1], 1),
    ]
    assert pairs[0][0]["url_key"] == "https://a.com"
    assert repo.list_session_feedback("u1", other_session)[0][1].click_order == 1

    repo.close()


def test_sqm_running_average(tmp_path):
    repo = _repo(tmp_path)
    assert repo.get_sqm("u1", "google") is None
    assert repo.sqm_weights("u1") == {}

    first = repo.record_sqm("u1", "google", 1.0)
    assert (first.score, first.sample_count) == (1.0, 1)
    second = repo.record_sqm("u1", "google", 0.0)
    assert second.score == pytest.approx(0.5)
    assert second.sample_count == 2
    repo.record_sqm("u1", "bing", -1.0)

    assert repo.get_sqm("u1", "google") == second
    assert [r.source_name for r in repo.list_sqm("u1")] == ["bing", "google"]
    assert repo.sqm_weights("u1") == {"bing": -1.0, "google": pytest.approx(0.5)}
    assert repo.sqm_weights("u2") == {}

    repo.close()


def test_learning_index_upsert(tmp_path):
    repo = _repo(tmp_path)
    doc = CanonicalDocument("https://a.com", "https://a.com/", "A", "about a")

    assert repo.merge_learning_entry("u1", doc, 0.0, "python") is None
    assert repo.get_learning_entry("u1", "https://a.com") is None

    repo.merge_learning_entry("u1", doc, 2.0, "python")
    entry = repo.merge_learning_entry("u1", doc, 1.0, "sqlite tips")
    assert entry.learned_score == pytest.approx(0.3 * 1.0 + 0.7 * 2.0)

    stored = repo.get_learning_entry("u1", "HTTPS://A.COM/")
    assert stored == entry
    assert stored.matched_queries == {"python", "sqlite tips"}

    repo.close()


def test_learning_entries_ordered_by_score(tmp_path):
    repo = _repo(tmp_path)
    for key, score in (("low", 0.5), ("high", 3.0), ("mid", 1.0)):
        doc = CanonicalDocument(f"https://{key}.com", f"https://{key}.com", key)
        repo.merge_learning_entry("u1", doc, score, "q")
    repo.merge_learning_entry(
        "u2", CanonicalDocument("https://x.com", "https://x.com"), 9.0, "q"
    )

    entries = repo.list_learning_entries("u1")
    assert [e.title for e in entries] == ["high", "mid", "low"]
    assert [e.title for e in repo.list_learning_entries("u1", limit=2)] == [
        "high",
        "mid",
    ]

    repo.close()
