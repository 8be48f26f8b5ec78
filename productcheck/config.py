"""Application configuration and constants."""
from __future__ import annotations

import os
from dataclasses import dataclass


def _get_env(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value is not None else default


@dataclass(frozen=True)
class Settings:
    """Simple settings container with environment variable overrides."""

    es_host: str = _get_env("ES_HOST", "http://localhost:9200")
    es_index: str = _get_env("ES_INDEX", "catalog")
    es_verification_index: str = _get_env("ES_VERIFICATION_INDEX", "verifications")
    es_request_timeout: float = float(_get_env("ES_REQUEST_TIMEOUT", "5"))
    mapping_path: str = _get_env("MAPPING_PATH", "catalog-mapping.json")
    catalog_path: str = _get_env("CATALOG_PATH", "catalog.json")
    catalog_source_url: str = _get_env("CATALOG_SOURCE_URL", "")
    redis_host: str = _get_env("REDIS_HOST", "localhost")
    redis_port: int = int(_get_env("REDIS_PORT", "6379"))
    suggestion_cache_ttl_seconds: int = int(_get_env("SUGGESTION_CACHE_TTL_SECONDS", "300"))
    suggestion_cache_capacity: int = int(_get_env("SUGGESTION_CACHE_CAPACITY", "50"))
    suggestion_cache_evict_batch: int = int(_get_env("SUGGESTION_CACHE_EVICT_BATCH", "10"))
    validation_cache_ttl_seconds: int = int(_get_env("VALIDATION_CACHE_TTL_SECONDS", "86400"))
    external_timeout_ms: int = int(_get_env("EXTERNAL_TIMEOUT_MS", "3000"))
    suggestion_debounce_ms: int = int(_get_env("SUGGESTION_DEBOUNCE_MS", "150"))
    barcode_debounce_ms: int = int(_get_env("BARCODE_DEBOUNCE_MS", "500"))
    min_query_length: int = int(_get_env("MIN_QUERY_LENGTH", "2"))
    external_lookup_threshold: int = int(_get_env("EXTERNAL_LOOKUP_THRESHOLD", "3"))
    internal_suggestion_limit: int = int(_get_env("INTERNAL_SUGGESTION_LIMIT", "5"))
    external_suggestion_limit: int = int(_get_env("EXTERNAL_SUGGESTION_LIMIT", "5"))
    external_sources: str = _get_env("EXTERNAL_SOURCES", "openfoodfacts,fda,nafdac")
    openfoodfacts_url: str = _get_env("OPENFOODFACTS_URL", "https://world.openfoodfacts.org")
    fda_url: str = _get_env("FDA_URL", "https://api.fda.gov")
    nafdac_url: str = _get_env("NAFDAC_URL", "https://greenbook.nafdac.gov.ng")
    load_on_startup: bool = _get_env("LOAD_ON_STARTUP", "true").lower() in {"1", "true", "yes"}
    log_level: str = _get_env("LOG_LEVEL", "INFO")

    @property
    def external_source_ids(self) -> list[str]:
        return [item.strip().lower() for item in self.external_sources.split(",") if item.strip()]


settings = Settings()
