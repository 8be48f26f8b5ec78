"""Fetching of the catalog export when it is not present locally."""
from __future__ import annotations

import logging
from pathlib import Path

import httpx

logger = logging.getLogger(__name__)


def ensure_data_file(path: str | Path, source_url: str | None = None, timeout: float = 60.0) -> Path:
    """Return ``path``, downloading it from ``source_url`` first if it is missing."""
    file_path = Path(path)
    if file_path.exists():
        return file_path
    if not source_url:
        raise FileNotFoundError(f"Catalog file missing and no download URL configured: {file_path}")
    logger.info("Downloading catalog %s from %s", file_path, source_url)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    partial = file_path.with_suffix(file_path.suffix + ".part")
    try:
        with httpx.stream("GET", source_url, timeout=timeout, follow_redirects=True) as response:
            response.raise_for_status()
            with partial.open("wb") as handle:
                for chunk in response.iter_bytes():
                    handle.write(chunk)
    except (OSError, httpx.HTTPError) as exc:
        partial.unlink(missing_ok=True)
        raise RuntimeError(f"Failed to download {source_url} -> {file_path}") from exc
    partial.replace(file_path)
    return file_path
