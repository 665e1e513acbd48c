from __future__ import annotations

from typing import Protocol, runtime_checkable

from metasearch.ranking.types import SourceResult


@runtime_checkable
class SearchSource(Protocol):
    name: str

    def search(self, query: str) -> SourceResult: ...
