"""Catalog index creation and maintenance helpers."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

from elasticsearch import Elasticsearch
from elasticsearch.exceptions import BadRequestError, NotFoundError

from .config import Settings

logger = logging.getLogger(__name__)


def _load_mapping(mapping_path: Path) -> dict:
    with mapping_path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


async def ensure_index(es: Elasticsearch, config: Settings) -> bool:
    """Create the catalog index with its analyzers if missing; True when created."""

    exists = await asyncio.to_thread(es.indices.exists, index=config.es_index)
    if exists:
        return False
    mapping_path = Path(config.mapping_path)
    body = _load_mapping(mapping_path)
    logger.info("Creating catalog index %s using %s", config.es_index, mapping_path)
    try:
        await asyncio.to_thread(es.indices.create, index=config.es_index, body=body)
    except BadRequestError as exc:
        if getattr(exc, "error", "") == "resource_already_exists_exception":
            logger.info("Index %s already exists", config.es_index)
            return False
        logger.exception("Failed to create index: %s", exc)
        raise
    return True


async def drop_index(es: Elasticsearch, config: Settings) -> None:
    try:
        await asyncio.to_thread(es.indices.delete, index=config.es_index)
    except NotFoundError:
        return


async def index_is_empty(es: Elasticsearch, config: Settings) -> bool:
    try:
        stats = await asyncio.to_thread(es.count, index=config.es_index)
        return stats.get("count", 0) == 0
    except NotFoundError:
        return True
