from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from metasearch.ranking.config import MAX_RESULTS_PER_SOURCE
from metasearch.ranking.types import RankedEntry, SourceResult

logger = logging.getLogger(__name__)


class SerpApiClient:
    """Organic web results from one engine behind SerpAPI.

    Works with any SerpAPI engine that returns ``organic_results``
    (google, bing, duckduckgo, ...). Failures never raise: they come back as
    an empty :class:`SourceResult` carrying the error message.
    """

    def __init__(
        self,
        api_key: str,
        engine: str,
        base_url: str = "https://serpapi.com",
        num: int = MAX_RESULTS_PER_SOURCE,
        timeout: float = 15,
    ) -> None:
        self.name = engine
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._num = num
        self._timeout = timeout

    def _get_json(self, path: str, params: dict[str, str]) -> dict:  # type: ignore[type-arg]
        url = f"{self._base_url}{path}?{urllib.parse.urlencode(params)}"
        req = urllib.request.Request(
            url, headers={"Accept": "application/json"}, method="GET"
        )
        with urllib.request.urlopen(req, timeout=self._timeout) as resp:
            return json.loads(resp.read().decode())  # type: ignore[no-any-return]

    def _parse_results(self, data: dict[str, Any]) -> tuple[RankedEntry, ...]:
        entries: list[RankedEntry] = []
        for i, raw in enumerate(data.get("organic_results") or []):
            link = str(raw.get("link") or "")
            if not link:
                continue
            position = raw.get("position")
            if type(position) is not int or position < 1:
                position = i + 1
            entries.append(
                RankedEntry(
                    source_name=self.name,
                    native_rank=position,
                    url=link,
                    title=str(raw.get("title") or ""),
                    snippet=str(raw.get("snippet") or ""),
                )
            )
        return tuple(entries[: self._num])

    def search(self, query: str) -> SourceResult:
        params = {
            "q": query,
            "engine": self.name,
            "num": str(self._num),
            "api_key": self._api_key,
        }
        try:
            data = self._get_json("/search.json", params)
        except urllib.error.HTTPError as e:
            logger.error("SerpAPI %s error [%s]: %s", self.name, e.code, e.reason)
            return SourceResult(self.name, error=f"HTTP {e.code}")
        except urllib.error.URLError as e:
            logger.error("SerpAPI %s connection error: %s", self.name, e.reason)
            return SourceResult(self.name, error=f"Connection error: {e.reason}")
        except Exception as e:
            logger.exception("SerpAPI %s request failed", self.name)
            return SourceResult(self.name, error=str(e) or type(e).__name__)

        if not isinstance(data, dict):
            logger.warning("SerpAPI %s returned an unexpected payload", self.name)
            return SourceResult(self.name, error="Malformed response")
        if data.get("error"):
            logger.warning("SerpAPI %s returned error: %s", self.name, data["error"])
            return SourceResult(self.name, error=str(data["error"]))

        try:
            entries = self._parse_results(data)
        except (AttributeError, TypeError):
            logger.warning("SerpAPI %s returned malformed results", self.name, exc_info=True)
            return SourceResult(self.name, error="Malformed response")
        logger.info("SerpAPI %s returned %d results", self.name, len(entries))
        return SourceResult(self.name, entries=entries)
