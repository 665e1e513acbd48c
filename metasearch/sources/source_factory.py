from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from metasearch.sources.search_source import SearchSource
from metasearch.sources.serpapi_client import SerpApiClient

if TYPE_CHECKING:
    from metasearch.config import Config

logger = logging.getLogger(__name__)


def create_sources(config: Config) -> list[SearchSource]:
    """Instantiate one SerpAPI-backed source per configured engine."""
    if not config.serp_api_key:
        logger.warning("SERP_API_KEY not configured; no external sources available")
        return []
    return [
        SerpApiClient(
            api_key=config.serp_api_key,
            engine=engine,
            base_url=config.serp_base_url,
            num=config.results_per_source,
        )
        for engine in config.engines
    ]
