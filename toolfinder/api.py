from __future__ import annotations

"""
FastAPI application for the toolfinder recommender.

- POST /recommend   workflow description -> up to five explained tools
- GET  /search      semantic search with structured filters
- GET  /health      liveness plus catalog size

Input problems map to 400, embedding/catalog outages to 503.  LLM
outages never surface here; the pipeline degrades instead.
"""

from typing import List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from .catalog_store import CatalogStore
from .config import (
    CATALOG_SNAPSHOT_PATH,
    SEARCH_DEFAULT_LIMIT,
    HealthResponse,
    PricingModel,
    RecommendRequest,
    RecommendResponse,
    SearchFilters,
    SearchResponse,
    ToolStatus,
    configure_logging,
)
from .errors import CatalogUnavailableError, EmbeddingServiceError, InputValidationError
from .mapping import map_candidates_to_response, map_recommendations_to_response
from .recommend import RecommendationOrchestrator, create_orchestrator

# =============================================================================
# FastAPI app + startup
# =============================================================================

app = FastAPI(title="toolfinder")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_catalog: Optional[CatalogStore] = None
_orchestrator: Optional[RecommendationOrchestrator] = None


def install(catalog: CatalogStore, orchestrator: RecommendationOrchestrator) -> None:
    """Set the catalog and orchestrator served by the app."""
    global _catalog, _orchestrator
    _catalog = catalog
    _orchestrator = orchestrator


@app.on_event("startup")
def startup_event() -> None:
    if _orchestrator is not None:
        return
    configure_logging()
    logger.info("Starting app warmup...")
    try:
        catalog = CatalogStore.from_snapshot(CATALOG_SNAPSHOT_PATH)
    except CatalogUnavailableError as e:
        logger.error("Catalog not loaded: {}", e)
        return
    install(catalog, create_orchestrator(catalog))
    logger.info("Warmup complete: {} tools in catalog", len(catalog))


def _require_orchestrator() -> RecommendationOrchestrator:
    if _orchestrator is None:
        raise CatalogUnavailableError("Catalog not loaded")
    return _orchestrator


# =============================================================================
# Error mapping
# =============================================================================

@app.exception_handler(InputValidationError)
def _input_error(request: Request, exc: InputValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(RequestValidationError)
def _request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())})


@app.exception_handler(EmbeddingServiceError)
@app.exception_handler(CatalogUnavailableError)
def _service_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("{} {} failed: {}", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# =============================================================================
# Routes
# =============================================================================

@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    if _catalog is None:
        return HealthResponse(status="unavailable")
    return HealthResponse(status="healthy", catalog_size=len(_catalog))


@app.post("/recommend", response_model=RecommendResponse)
def recommend(req: RecommendRequest) -> RecommendResponse:
    orchestrator = _require_orchestrator()
    recs = orchestrator.recommend_text(req.tasks, role=req.role, category_ids=req.category_ids)
    return map_recommendations_to_response(recs)


@app.get("/search", response_model=SearchResponse)
def search(
    q: str = Query(..., description="free-text search query"),
    category_ids: List[str] = Query(default=[], alias="categoryId"),
    tag_ids: List[str] = Query(default=[], alias="tagId"),
    pricing_models: List[PricingModel] = Query(default=[], alias="pricingModel"),
    api_available: Optional[bool] = Query(default=None, alias="apiAvailable"),
    enterprise_ready: Optional[bool] = Query(default=None, alias="enterpriseReady"),
    limit: int = Query(default=SEARCH_DEFAULT_LIMIT, ge=1, le=100),
) -> SearchResponse:
    orchestrator = _require_orchestrator()
    filters = SearchFilters(
        status=ToolStatus.APPROVED,
        category_ids=category_ids,
        tag_ids=tag_ids,
        pricing_models=pricing_models,
        api_available=api_available,
        enterprise_ready=enterprise_ready,
    )
    candidates = orchestrator.search(q, filters=filters, top_k=limit)
    return map_candidates_to_response(candidates)
