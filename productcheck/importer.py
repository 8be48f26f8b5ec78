"""Loads a JSON catalog export into the Elasticsearch catalog index."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Iterable

from elasticsearch import Elasticsearch, helpers

from .config import Settings
from .data_files import ensure_data_file
from .indexing import drop_index, ensure_index, index_is_empty
from .phonetics import normalize_query, to_phonetic, transliterate_text
from .utils import clean_barcode

logger = logging.getLogger(__name__)


def _load_catalog(path: Path) -> list[dict]:
    with path.open("r", encoding="utf-8") as fh:
        first_line = fh.readline()
        # Git LFS pointer instead of real data.
        if first_line.startswith("version https://git-lfs.github.com/spec/v1"):
            logger.warning("Catalog file %s is a Git LFS pointer; real data not downloaded", path)
            return []
        fh.seek(0)
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("products", [])
    return data


def _manufacturer_name(raw: dict) -> str:
    manufacturer = raw.get("manufacturer")
    if isinstance(manufacturer, dict):
        return manufacturer.get("company_name") or manufacturer.get("name") or ""
    return raw.get("manufacturer_name") or manufacturer or ""


def prepare_product(raw: dict) -> dict:
    name = (raw.get("name") or raw.get("title") or "").strip()
    manufacturer = _manufacturer_name(raw)
    category = raw.get("category")
    if isinstance(category, dict):
        category = category.get("name")

    phonetic_source = " ".join(part for part in (name, manufacturer) if part)
    document = {
        "id": str(raw.get("id") or raw.get("barcode") or name),
        "name": name,
        "name_translit": transliterate_text(name),
        "phonetic": to_phonetic(normalize_query(phonetic_source)),
        "manufacturer_name": manufacturer,
        "status": (raw.get("status") or "pending").strip().lower(),
    }
    barcode = clean_barcode(raw.get("barcode") or raw.get("batch_number"))
    if barcode:
        document["barcode"] = barcode
    if category:
        document["category"] = category
    if raw.get("nutri_score"):
        document["nutri_score"] = str(raw["nutri_score"]).strip().upper()
    for field in ("country", "state", "image_url", "registration_date", "certification_number"):
        if raw.get(field):
            document[field] = raw[field]
    if "registration_date" not in document and raw.get("created_at"):
        document["registration_date"] = raw["created_at"]
    return document


def _iter_actions(index: str, products: Iterable[dict]) -> Iterable[dict]:
    for product in products:
        yield {"_index": index, "_id": product["id"], "_source": product}


async def import_catalog(es: Elasticsearch, config: Settings) -> int:
    path = ensure_data_file(config.catalog_path, config.catalog_source_url or None)
    raw_products = _load_catalog(path)
    products = [prepare_product(item) for item in raw_products if item.get("name") or item.get("title")]
    if not products:
        return 0
    actions = list(_iter_actions(config.es_index, products))
    await asyncio.to_thread(helpers.bulk, es, actions)
    logger.info("Imported %s catalog entries into %s", len(actions), config.es_index)
    return len(actions)


async def import_if_empty(es: Elasticsearch, config: Settings) -> int:
    if not await index_is_empty(es, config):
        return 0
    return await import_catalog(es, config)


async def reindex_data(es: Elasticsearch, config: Settings) -> int:
    await drop_index(es, config)
    await ensure_index(es, config)
    return await import_catalog(es, config)
