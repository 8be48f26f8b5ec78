"""Elasticsearch client for the internal catalog.

Only the official synchronous client is used; catalog calls are moved off the
event loop with ``asyncio.to_thread`` by the callers.
"""
from __future__ import annotations

import logging
from functools import lru_cache

from elasticsearch import Elasticsearch

from .config import Settings, settings

logger = logging.getLogger(__name__)


def create_client(config: Settings) -> Elasticsearch:
    logger.info("Connecting to catalog Elasticsearch at %s (index=%s)", config.es_host, config.es_index)
    return Elasticsearch(
        config.es_host,
        request_timeout=config.es_request_timeout,
        retry_on_timeout=True,
        max_retries=2,
    )


@lru_cache(maxsize=1)
def get_client() -> Elasticsearch:
    return create_client(settings)
