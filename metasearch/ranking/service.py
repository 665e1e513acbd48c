from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from metasearch.data.repository import Repository
from metasearch.ranking.config import MAX_QUERY_CHARS
from metasearch.ranking.fusion import aggregate_with_scores, resolve_method
from metasearch.ranking.importance import build_preference_ranking
from metasearch.ranking.merger import (
    active_sources,
    deduplicate_results,
    normalize_url,
)
from metasearch.ranking.quality import compute_sqm
from metasearch.ranking.types import (
    AggregationMethod,
    CanonicalDocument,
    FeedbackSignals,
    RankedEntry,
    ScoredDocument,
    SourceResult,
    WeightProfile,
)
from metasearch.sources.learned_source import LearningIndexSource
from metasearch.sources.search_source import SearchSource
from metasearch.sources.source_factory import create_sources

if TYPE_CHECKING:
    from metasearch.config import Config

logger = logging.getLogger(__name__)


class FeedbackEvent(StrEnum):
    CLICK = "click"
    DWELL = "dwell"
    PRINT = "print"
    SAVE = "save"
    BOOKMARK = "bookmark"
    EMAIL = "email"
    COPY_PASTE = "copy_paste"


def _session_documents(rows: Sequence[dict]) -> list[CanonicalDocument]:
    """Rebuild the deduplicated documents of a stored session."""
    by_source: dict[str, list[RankedEntry]] = defaultdict(list)
    for row in rows:
        by_source[row["engine"]].append(
            RankedEntry(
                source_name=row["engine"],
                native_rank=int(row["original_rank"]),
                url=row["url"],
                title=row["title"] or "",
                snippet=row["snippet"] or "",
            )
        )
    return deduplicate_results(
        SourceResult(source, tuple(entries)) for source, entries in by_source.items()
    )


class SearchService:
    def __init__(
        self,
        repo: Repository,
        config: Config,
        sources: Sequence[SearchSource] | None = None,
    ) -> None:
        self._repo = repo
        self._config = config
        self._sources: list[SearchSource] = (
            list(sources) if sources is not None else create_sources(config)
        )

    # -- profiles ------------------------------------------------------------

    def get_profile(self, user_id: str) -> WeightProfile:
        profile = self._repo.get_weight_profile(user_id)
        if profile is None:
            return WeightProfile(default_method=self._config.default_aggregation_method)
        return profile

    def save_profile(self, user_id: str, profile: WeightProfile) -> None:
        self._repo.save_weight_profile(user_id, profile)

    # -- search --------------------------------------------------------------

    def _query_source(self, source: SearchSource, query: str) -> SourceResult:
        try:
            return source.search(query)
        except Exception as exc:
            logger.warning("Source %s failed", source.name, exc_info=True)
            return SourceResult(source.name, error=str(exc) or type(exc).__name__)

    def _fan_out(self, query: str) -> list[SourceResult]:
        if not self._sources:
            return []
        with ThreadPoolExecutor(max_workers=len(self._sources)) as pool:
            futures = [
                pool.submit(self._query_source, source, query)
                for source in self._sources
            ]
            return [future.result() for future in futures]

    def search(
        self,
        user_id: str,
        query: str,
        method: str | AggregationMethod | None = None,
    ) -> dict[str, Any]:
        """Query every source, merge and aggregate, and record the session.

        Args:
            user_id: The searching user.
            query: Free-text query.
            method: Aggregation strategy; defaults to the user's preferred one.

        Returns:
            ``session_id``, ``query``, ``aggregation_method``, ``merged``
            (best first, each with its per-source ranks and result ids) and
            ``sources`` (per-source count and error).

        Raises:
            ValueError: If the query is empty or too long.
        """
        text = (query or "").strip()
        if not text:
            raise ValueError("Query is required")
        if len(text) > MAX_QUERY_CHARS:
            raise ValueError(f"Query too long (max {MAX_QUERY_CHARS} chars)")

        profile = self.get_profile(user_id)
        resolved = resolve_method(method) if method else profile.default_method
        logger.info("Multi-source search [%s] for user %s: '%s'", resolved, user_id, text)

        results = self._fan_out(text)
        if self._config.learning_index_enabled:
            learned = self._query_source(
                LearningIndexSource(
                    self._repo,
                    user_id,
                    limit=min(
                        self._config.learning_index_limit,
                        self._config.results_per_source,
                    ),
                ),
                text,
            )
            if learned.entries:
                results.append(learned)

        documents = deduplicate_results(results)
        ranked = aggregate_with_scores(
            documents,
            resolved,
            active_sources(results),
            self._repo.sqm_weights(user_id),
            n=self._config.results_per_source,
        )

        session_id = self._repo.create_session(user_id, text, resolved)
        entries = [entry for result in results for entry in result.entries]
        result_ids = self._repo.add_results(session_id, entries)
        doc_ranks = {doc.normalized_key: doc.source_ranks for doc in documents}
        ids_by_doc: dict[str, dict[str, int]] = defaultdict(dict)
        for entry, result_id in zip(entries, result_ids):
            key = normalize_url(entry.url)
            # Point at the row whose rank the merger kept for this source.
            if doc_ranks[key].get(entry.source_name) == entry.native_rank:
                ids_by_doc[key].setdefault(entry.source_name, result_id)
        self._repo.set_aggregated_ranks(
            session_id,
            {doc.normalized_key: position for position, (doc, _) in enumerate(ranked, 1)},
        )

        merged = [
            {
                "rank": position,
                "url": doc.url,
                "title": doc.title,
                "snippet": doc.snippet,
                "score": score,
                "sources": [
                    {"source": source, "rank": rank}
                    for source, rank in doc.source_ranks.items()
                ],
                "result_ids": ids_by_doc.get(doc.normalized_key, {}),
            }
            for position, (doc, score) in enumerate(ranked, 1)
        ]
        logger.info(
            "Search session %d: %d document(s) from %d source(s)",
            session_id,
            len(merged),
            len(results),
        )
        return {
            "session_id": session_id,
            "query": text,
            "aggregation_method": resolved.value,
            "merged": merged,
            "sources": [
                {"source": r.source_name, "count": r.count, "error": r.error}
                for r in results
            ],
        }

    # -- feedback ------------------------------------------------------------

    def record_feedback(
        self,
        user_id: str,
        result_id: int,
        event: str | FeedbackEvent,
        value: int | None = None,
    ) -> FeedbackSignals:
        """Record one interaction with a search result.

        Raises:
            LookupError: If the result does not exist or belongs to another
                user's session.
            ValueError: For an unknown event or a missing/negative value.
        """
        try:
            kind = FeedbackEvent(event)
        except ValueError:
            raise ValueError(f"Unknown feedback event '{event}'") from None
        result = self._repo.get_result(result_id)
        if result is None:
            raise LookupError(f"Search result {result_id} not found")
        session = self._repo.get_session(result["search_history_id"])
        if session is None or session["user_id"] != user_id:
            raise LookupError(f"Search result {result_id} not found")

        if kind is FeedbackEvent.CLICK:
            if value is None:
                return self._repo.record_click(user_id, result_id)
            order = int(value)
            return self._repo.update_feedback(
                user_id, result_id, lambda s: s.record_click(order)
            )
        if kind in (FeedbackEvent.DWELL, FeedbackEvent.COPY_PASTE) and value is None:
            raise ValueError(f"Event '{kind}' requires a value")

        updates = {
            FeedbackEvent.DWELL: lambda s: s.record_dwell(int(value)),
            FeedbackEvent.PRINT: lambda s: s.mark_printed(),
            FeedbackEvent.SAVE: lambda s: s.mark_saved(),
            FeedbackEvent.BOOKMARK: lambda s: s.mark_bookmarked(),
            FeedbackEvent.EMAIL: lambda s: s.mark_emailed(),
            FeedbackEvent.COPY_PASTE: lambda s: s.add_copy_paste(int(value)),
        }
        signals = self._repo.update_feedback(user_id, result_id, updates[kind])
        logger.debug("Feedback %s recorded for result %d", kind, result_id)
        return signals

    # -- preference-derived updates ------------------------------------------

    def _preference_ranking(
        self, user_id: str, session_id: int
    ) -> tuple[list[ScoredDocument], str | None]:
        session = self._repo.get_session(session_id)
        if session is None or session["user_id"] != user_id:
            raise LookupError(f"Search session {session_id} not found")

        rows = self._repo.list_session_results(session_id)
        if not rows:
            return [], "No search results"
        pairs = self._repo.list_session_feedback(user_id, session_id)
        if not pairs:
            return [], "No feedback recorded for this session"

        feedback: dict[str, list[FeedbackSignals]] = defaultdict(list)
        for result, signals in pairs:
            feedback[result["url_key"]].append(signals)
        preference = build_preference_ranking(
            _session_documents(rows), feedback, self.get_profile(user_id)
        )
        return preference, None

    def compute_sqm(self, user_id: str, session_id: int) -> dict[str, Any]:
        """Update per-source quality from the session's feedback.

        Returns ``updated`` (number of sources updated) and ``sqm`` (the
        correlation measured for each source this session). When there is
        not enough feedback ``updated`` is 0 and ``message`` says why.
        """
        preference, message = self._preference_ranking(user_id, session_id)
        if message:
            return {"updated": 0, "sqm": [], "message": message}

        report = compute_sqm(preference)
        if report.insufficient_data:
            return {
                "updated": 0,
                "sqm": [],
                "message": "Need at least 2 documents with feedback for "
                "Spearman correlation",
            }

        sqm = []
        for source, rho in report.correlations.items():
            record = self._repo.record_sqm(user_id, source, rho)
            sqm.append(
                {
                    "source": source,
                    "rho": rho,
                    "score": record.score,
                    "sample_count": record.sample_count,
                }
            )
        logger.info("SQM updated for %d source(s) of session %d", len(sqm), session_id)
        return {"updated": len(sqm), "sqm": sqm}

    def update_learning_index(self, user_id: str, session_id: int) -> dict[str, Any]:
        """Merge the session's important documents into the learning index.

        Returns ``updated`` and ``entries`` (url and new learned score of
        every upserted document).
        """
        preference, message = self._preference_ranking(user_id, session_id)
        if message:
            return {"updated": 0, "entries": [], "message": message}

        query = str(self._repo.get_session(session_id)["query"])
        entries = []
        for item in preference:
            entry = self._repo.merge_learning_entry(
                user_id, item.document, item.importance, query
            )
            if entry is not None:
                entries.append({"url": entry.url, "learned_score": entry.learned_score})
        logger.info(
            "Learning index: %d document(s) merged for session %d",
            len(entries),
            session_id,
        )
        return {"updated": len(entries), "entries": entries}

    def close(self) -> None:
        self._repo.close()
