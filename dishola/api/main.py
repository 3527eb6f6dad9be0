"""
Main FastAPI application for the Dishola search service.
"""
import hashlib
import uuid
from contextlib import asynccontextmanager, aclosing
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

from dishola import __version__
from dishola.cache.cache_manager import CacheManager
from dishola.cache.search_cache import SearchCache
from dishola.monitoring.metrics_collector import SearchMetrics
from dishola.search.ai_recommender import AIRecommender, placeholder_recommendation
from dishola.search.db_recommender import DatabaseRecommender
from dishola.search.llm_client import LLMClient
from dishola.search.models import SearchRequest, SortBy, dump_recommendations
from dishola.search.orchestrator import SearchOrchestrator
from dishola.search.query_parser import QueryParser
from dishola.security.abuse_protection import AbuseProtection
from dishola.utils.config import get_settings
from dishola.utils.location_resolver import location_from_request, resolve_location_info
from dishola.utils.logger import app_logger, create_logger


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


# Global components
orchestrator: Optional[SearchOrchestrator] = None
abuse_protection: Optional[AbuseProtection] = None
metrics = SearchMetrics()


def build_orchestrator() -> SearchOrchestrator:
    """Wire the search pipeline from settings."""
    settings = get_settings()
    llm = LLMClient()
    return SearchOrchestrator(
        query_parser=QueryParser(llm, CacheManager()),
        db_recommender=DatabaseRecommender(),
        ai_recommender=AIRecommender(llm),
        cache=SearchCache(settings.search_cache_ttl_seconds, settings.search_cache_max_entries),
        metrics=metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the search pipeline on startup."""
    global orchestrator, abuse_protection

    app_logger.info("Starting Dishola search API...")
    abuse_protection = AbuseProtection()
    try:
        orchestrator = build_orchestrator()
        app_logger.info("✅ Search pipeline initialized")
    except Exception as e:
        app_logger.error(f"❌ Failed to initialize search pipeline: {e}")
        orchestrator = None

    yield

    try:
        if orchestrator and orchestrator.query_parser.cache:
            await orchestrator.query_parser.cache.close()
        app_logger.info("API shutdown completed")
    except Exception as e:
        app_logger.error(f"Error during shutdown: {e}")


app = FastAPI(
    title="Dishola API",
    description="Streaming dish search combining community data and AI recommendations",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def get_orchestrator() -> SearchOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Search service is not available")
    return orchestrator


def get_abuse_protection() -> AbuseProtection:
    global abuse_protection
    if abuse_protection is None:
        abuse_protection = AbuseProtection()
    return abuse_protection


def get_client_id(request: Request) -> str:
    """Extract client ID from request for abuse protection."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
    else:
        # TestClient and some proxies leave request.client empty
        client_ip = request.client.host if request.client else "localtest"

    user_agent = request.headers.get("User-Agent", "")
    return hashlib.md5(f"{client_ip}:{user_agent}".encode()).hexdigest()[:16]


def _sort_param(sort: Optional[str]) -> SortBy:
    try:
        return SortBy(sort or "distance")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid sort parameter. Use 'distance' or 'rating'.")


def parse_search_request(
    request: Request,
    q: Optional[str] = None,
    tastes: Optional[str] = None,
    sort: Optional[str] = None,
    protection: AbuseProtection = Depends(get_abuse_protection),
) -> SearchRequest:
    """Validate search parameters before any response bytes are sent."""
    sort_by = _sort_param(sort)
    location = location_from_request(request.query_params, request.headers)
    try:
        search_request = SearchRequest.from_params(
            q, tastes, location.lat, location.long, sort_by.value, location.address
        )
    except ValidationError:
        raise HTTPException(status_code=400, detail="Missing required parameter: either 'q' (query) or 'tastes' must be provided")

    allowed, error = protection.check_request(get_client_id(request), search_request.query, search_request.tastes)
    if not allowed:
        status = 429 if "rate limit" in (error or "").lower() else 400
        raise HTTPException(status_code=status, detail=error)
    return search_request


@app.get("/api/search")
async def search(
    search_request: SearchRequest = Depends(parse_search_request),
    pipeline: SearchOrchestrator = Depends(get_orchestrator),
):
    """Stream search events as newline-delimited JSON."""
    request_id = uuid.uuid4().hex[:12]
    logger = create_logger("search", request_id)
    logger.info(f"🔍 Search request: q={search_request.query!r} tastes={search_request.tastes} sort={search_request.sort_by.value}")

    async def event_stream():
        async with aclosing(pipeline.stream(search_request, request_id)) as events:
            async for event in events:
                yield event.to_line()

    return StreamingResponse(
        event_stream(),
        media_type="application/x-ndjson",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "X-Request-ID": request_id,
        },
    )


@app.get("/api/search/ai")
async def search_ai(
    search_request: SearchRequest = Depends(parse_search_request),
    pipeline: SearchOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """AI recommendations without streaming."""
    logger = create_logger("search/ai")
    parsed = await pipeline.parse(search_request)
    outcome = await pipeline.run_ai(parsed, search_request.location, search_request.tastes, search_request.sort_by)

    results = outcome.results
    if outcome.error is not None:
        logger.warning(f"AI search degraded: {outcome.error}")
        results = results or [placeholder_recommendation()]

    return {
        "results": dump_recommendations(results),
        "query": search_request.query or ", ".join(search_request.tastes),
        "location": search_request.location.label(),
        "parsedQuery": parsed.model_dump(by_alias=True),
        "includedTastes": search_request.tastes,
        "sortBy": search_request.sort_by.value,
    }


@app.get("/api/search/db")
async def search_db(
    request: Request,
    dish: Optional[str] = None,
    sort: Optional[str] = None,
    pipeline: SearchOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Community (database) recommendations without streaming."""
    if not dish or not dish.strip():
        raise HTTPException(status_code=400, detail="Missing required parameter: dish")
    sort_by = _sort_param(sort)
    location = location_from_request(request.query_params, request.headers)

    results = await pipeline.run_db(dish.strip(), location, sort_by)
    return {
        "results": dump_recommendations(results),
        "query": dish.strip(),
        "location": location.label(),
        "sortBy": sort_by.value,
    }


@app.get("/api/location-info")
async def location_info(request: Request, lat: Optional[str] = None, lng: Optional[str] = None) -> Dict[str, Any]:
    """Neighborhood and city for a pair of coordinates."""
    if not lat or not lng:
        raise HTTPException(status_code=400, detail="Missing required parameters: lat and lng")

    info = await resolve_location_info(lat, lng, request.headers)
    return {"neighborhood": info.neighborhood, "city": info.city, "displayName": info.displayName}


@app.get("/api/admin/cache/stats")
async def cache_stats(pipeline: SearchOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    parsed_cache = pipeline.query_parser.cache
    return {
        "searchCache": pipeline.cache.stats(),
        "parsedQueryCache": await parsed_cache.get_stats() if parsed_cache else {"connected": False},
        "timestamp": datetime.now().isoformat(),
    }


@app.post("/api/admin/cache/clear")
async def cache_clear(pipeline: SearchOrchestrator = Depends(get_orchestrator)) -> Dict[str, Any]:
    cleared = pipeline.cache.clear()
    parsed_cache = pipeline.query_parser.cache
    cleared_parsed = await parsed_cache.clear_pattern("parsed_query:*") if parsed_cache else 0
    app_logger.info(f"🧹 Cleared {cleared} cached searches and {cleared_parsed} parsed queries")
    return {"success": True, "clearedSearches": cleared, "clearedParsedQueries": cleared_parsed}


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    settings = get_settings()
    services_status = {
        "search_pipeline": "healthy" if orchestrator else "uninitialized",
        "llm_gateway": "configured" if settings.llm_api_key else "unconfigured",
        "supabase": "configured" if orchestrator and orchestrator.db.client else "unconfigured",
    }
    if orchestrator and orchestrator.query_parser.cache:
        redis_stats = await orchestrator.query_parser.cache.get_stats()
        services_status["redis"] = "healthy" if redis_stats.get("connected") else "unavailable"

    return HealthResponse(
        status="healthy" if orchestrator else "degraded",
        timestamp=datetime.now().isoformat(),
        version=__version__,
        services=services_status
    )


@app.get("/stats")
async def get_statistics() -> Dict[str, Any]:
    """Search metrics and abuse protection statistics."""
    return {
        "metrics": metrics.get_metrics(),
        "security": get_abuse_protection().get_security_stats(),
        "searchCache": orchestrator.cache.stats() if orchestrator else None,
        "timestamp": datetime.now().isoformat(),
    }
