"""HTTP API tests against a temp database and fake sources."""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from metasearch.api.main import create_app
from metasearch.config import Config
from metasearch.ranking.types import SourceResult

from tests.test_helpers import source


class _StaticSource:
    def __init__(self, name: str, *urls: str) -> None:
        self.name = name
        self._result = source(name, *urls)

    def search(self, query: str) -> SourceResult:
        return self._result


def _sources(config: Config) -> list[_StaticSource]:
    return [
        _StaticSource("google", "https://a.com", "https://b.com", "https://c.com"),
        _StaticSource("bing", "https://b.com", "https://c.com", "https://a.com"),
    ]


@pytest.fixture
def client(tmp_path: Path) -> TestClient:
    config = Config(config_path=tmp_path / "config.json")
    config.set_db_path(str(tmp_path / "api.db"))
    return TestClient(create_app(config, sources_factory=_sources))


def _search(client: TestClient, query: str = "python", **extra) -> dict:
    response = client.post("/search", json={"user_id": "u1", "query": query, **extra})
    assert response.status_code == 200
    return response.json()


def _feedback(client: TestClient, result_id: int, event: str, value=None):
    payload = {"user_id": "u1", "result_id": result_id, "event": event}
    if value is not None:
        payload["value"] = value
    return client.post("/feedback", json=payload)


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_search(client: TestClient) -> None:
    body = _search(client, aggregation_method="borda")
    assert body["aggregation_method"] == "borda"
    assert [d["url"] for d in body["merged"]] == [
        "https://b.com",
        "https://a.com",
        "https://c.com",
    ]
    assert body["merged"][0]["sources"] == [
        {"source": "google", "rank": 2},
        {"source": "bing", "rank": 1},
    ]
    assert [s["source"] for s in body["sources"]] == ["google", "bing"]


def test_search_rejects_empty_query(client: TestClient) -> None:
    response = client.post("/search", json={"user_id": "u1", "query": "  "})
    assert response.status_code == 400


def test_feedback(client: TestClient) -> None:
    body = _search(client)
    result_id = body["merged"][0]["result_ids"]["google"]

    response = _feedback(client, result_id, "click")
    assert response.status_code == 200
    assert response.json()["click_order"] == 1

    response = _feedback(client, result_id, "dwell", 2500)
    assert response.json()["dwell_time_ms"] == 2500

    assert _feedback(client, 9999, "save").status_code == 404
    assert _feedback(client, result_id, "dwell").status_code == 400
    assert _feedback(client, result_id, "hover").status_code == 422
    assert _feedback(client, result_id, "copy_paste", -3).status_code == 422


def test_feedback_on_another_users_result(client: TestClient) -> None:
    result_id = _search(client)["merged"][0]["result_ids"]["google"]

    response = client.post(
        "/feedback", json={"user_id": "u2", "result_id": result_id, "event": "save"}
    )
    assert response.status_code == 404
    assert _feedback(client, result_id, "save").status_code == 200


def test_sqm_and_learning_index(client: TestClient) -> None:
    body = _search(client)
    ids = {d["url"]: d["result_ids"]["google"] for d in body["merged"]}
    _feedback(client, ids["https://c.com"], "click")
    _feedback(client, ids["https://c.com"], "save")
    _feedback(client, ids["https://a.com"], "click")
    session = {"user_id": "u1", "session_id": body["session_id"]}

    sqm = client.post("/sqm", json=session).json()
    assert sqm["updated"] == 2
    stored = client.get("/sqm/u1").json()
    assert {row["source"]: row["sample_count"] for row in stored} == {
        "bing": 1,
        "google": 1,
    }

    learned = client.post("/learning-index", json=session).json()
    assert learned["updated"] == 2
    entries = client.get("/learning-index/u1").json()
    assert [e["url"] for e in entries] == ["https://c.com", "https://a.com"]
    assert entries[0]["matched_queries"] == ["python"]
    assert len(client.get("/learning-index/u1", params={"limit": 1}).json()) == 1


def test_unknown_session(client: TestClient) -> None:
    session = {"user_id": "u1", "session_id": 42}
    assert client.post("/sqm", json=session).status_code == 404
    assert client.post("/learning-index", json=session).status_code == 404


def test_profiles(client: TestClient) -> None:
    default = client.get("/profiles/u1").json()
    assert default["weight_v"] == 1.0
    assert default["default_aggregation_method"] == "borda"

    response = client.put(
        "/profiles/u1",
        json={"weight_v": 2.5, "weight_c": 0, "default_aggregation_method": "mfo"},
    )
    assert response.status_code == 200
    saved = response.json()
    assert saved["weight_v"] == 2.5
    assert saved["weight_c"] == 0.0
    assert saved["weight_t"] == 1.0
    assert saved["default_aggregation_method"] == "mfo"

    assert _search(client)["aggregation_method"] == "mfo"

    bad = client.put("/profiles/u1", json={"weight_v": -1})
    assert bad.status_code == 422
