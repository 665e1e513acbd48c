"""The personalised learning index, exposed as one more search source."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from metasearch.ranking.config import (
    LEARNED_SOURCE_NAME,
    LEARNING_INDEX_FETCH_LIMIT,
    MAX_RESULTS_PER_SOURCE,
)
from metasearch.ranking.learning_index import relevant_entries
from metasearch.ranking.types import RankedEntry, SourceResult

if TYPE_CHECKING:
    from metasearch.data.repository import Repository

logger = logging.getLogger(__name__)


class LearningIndexSource:
    """Answers a query from the documents a user previously found important.

    The user's top entries by learned score are fetched, the ones learned
    for a query sharing a token with the new query are kept, and they are
    ranked 1..k in learned-score order (k at most ``limit``).
    """

    def __init__(
        self,
        repo: Repository,
        user_id: str,
        limit: int = MAX_RESULTS_PER_SOURCE,
        fetch_limit: int = LEARNING_INDEX_FETCH_LIMIT,
    ) -> None:
        self.name = LEARNED_SOURCE_NAME
        self._repo = repo
        self._user_id = user_id
        self._limit = limit
        self._fetch_limit = max(fetch_limit, limit)

    def search(self, query: str) -> SourceResult:
        entries = self._repo.list_learning_entries(self._user_id, self._fetch_limit)
        relevant = relevant_entries(entries, query)[: self._limit]
        logger.info(
            "Learning index: %d/%d entries relevant for user %s",
            len(relevant),
            len(entries),
            self._user_id,
        )
        return SourceResult(
            self.name,
            entries=tuple(
                RankedEntry(
                    source_name=self.name,
                    native_rank=position,
                    url=entry.url,
                    title=entry.title or entry.url,
                    snippet=entry.snippet,
                )
                for position, entry in enumerate(relevant, start=1)
            ),
        )
