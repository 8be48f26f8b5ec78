"""FastAPI application exposing suggestions and verification."""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query

from .config import settings
from .coordinator import RequestCoordinator
from .es_client import get_client
from .importer import import_if_empty, reindex_data
from .indexing import ensure_index, index_is_empty
from .models import (
    SearchFilters,
    SelectRequest,
    SessionState,
    SuggestionState,
    VerificationReport,
    VerifyRequest,
)
from .service import ProductLookupService, build_service

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL = logging.getLevelName(settings.log_level.upper())
MAX_TRACKED_CLIENTS = 1024

# Force a predictable logging setup even when run under uvicorn. ``force=True``
# replaces uvicorn's default handlers.
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT, force=True)
for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "elastic_transport", "httpx"):
    logging.getLogger(name).setLevel(LOG_LEVEL)

logger = logging.getLogger(__name__)
logger.info("Logging configured at %s", settings.log_level.upper())

app = FastAPI(title="Product Suggestion & Verification Service")

_coordinators: "OrderedDict[str, RequestCoordinator]" = OrderedDict()


@lru_cache(maxsize=1)
def get_service() -> ProductLookupService:
    return build_service(settings, es=get_client())


def coordinator_for(client_id: Optional[str]) -> RequestCoordinator:
    """Supersession is scoped per client; anonymous requests never supersede each other."""
    if not client_id:
        return RequestCoordinator()
    coordinator = _coordinators.get(client_id)
    if coordinator is None:
        coordinator = RequestCoordinator()
        _coordinators[client_id] = coordinator
        while len(_coordinators) > MAX_TRACKED_CLIENTS:
            _coordinators.popitem(last=False)
    else:
        _coordinators.move_to_end(client_id)
    return coordinator


@app.on_event("startup")
async def startup_event() -> None:
    es = get_client()
    await ensure_index(es, settings)
    if settings.load_on_startup:
        try:
            imported = await import_if_empty(es, settings)
        except FileNotFoundError as exc:
            logger.warning("Catalog not imported: %s", exc)
        else:
            if imported:
                logger.info("Imported %s catalog entries on startup", imported)


@app.get("/health")
async def health() -> dict:
    es = get_client()
    status = await asyncio.to_thread(es.cluster.health)
    empty = await index_is_empty(es, settings)
    return {
        "elasticsearch": status.get("status"),
        "index": settings.es_index,
        "empty": empty,
    }


@app.get("/suggestions", response_model=SuggestionState)
async def suggestions(
    q: str = Query(..., description="Partial product name"),
    category: Optional[str] = None,
    nutri_score: Optional[List[str]] = Query(None),
    country: Optional[str] = None,
    state: Optional[str] = None,
    x_client_id: Optional[str] = Header(None),
    service: ProductLookupService = Depends(get_service),
) -> SuggestionState:
    filters = SearchFilters(category=category, nutri_score=nutri_score, country=country, state=state)
    return await service.get_suggestions(
        q,
        None if filters.is_empty() else filters,
        coordinator=coordinator_for(x_client_id),
    )


@app.post("/verify", response_model=VerificationReport)
async def verify(
    request: VerifyRequest,
    x_client_id: Optional[str] = Header(None),
    service: ProductLookupService = Depends(get_service),
) -> VerificationReport:
    report = await service.verify_product(
        request.q,
        request.mode,
        barcode=request.barcode,
        user_id=request.user_id,
        client_id=x_client_id or None,
    )
    if report.state is SessionState.IDLE:
        raise HTTPException(status_code=400, detail=report.errors[0] if report.errors else "Query must not be empty")
    return report


@app.post("/select", response_model=VerificationReport)
async def select(
    request: SelectRequest,
    x_client_id: Optional[str] = Header(None),
    service: ProductLookupService = Depends(get_service),
) -> VerificationReport:
    client_id = x_client_id or None
    if request.product is not None:
        return await service.select_suggestion(request.product, client_id=client_id)
    if request.name and request.name.strip():
        return await service.select_suggestion(request.name, client_id=client_id)
    raise HTTPException(status_code=400, detail="Either name or product must be provided")


@app.post("/reindex")
async def reindex(service: ProductLookupService = Depends(get_service)) -> dict:
    es = get_client()
    count = await reindex_data(es, settings)
    service.suggestion_cache.clear()
    return {"indexed": count}
