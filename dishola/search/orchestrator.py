"""
Search orchestration: runs the database and AI recommenders side by side and
turns their progress into an ordered stream of typed events.
"""
import asyncio
import time
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

from dishola.cache.search_cache import SearchCache
from dishola.monitoring.metrics_collector import SearchMetrics
from dishola.search.ai_recommender import AIRecommender, PromptConstructionError, placeholder_recommendation
from dishola.search.db_recommender import DatabaseRecommender
from dishola.search.distance import deduplicate_results
from dishola.search.models import (
    AIRecommendationResult,
    DishRecommendation,
    EventType,
    Location,
    ParsedQuery,
    SearchRequest,
    SortBy,
    StreamEvent,
    dump_recommendations,
)
from dishola.search.query_parser import QueryParser
from dishola.utils.config import get_settings
from dishola.utils.logger import create_logger


class SearchOrchestrator:
    """Coordinate one search across both recommendation sources."""

    def __init__(self, query_parser: QueryParser, db_recommender: DatabaseRecommender,
                 ai_recommender: AIRecommender, cache: SearchCache,
                 metrics: Optional[SearchMetrics] = None, progressive: Optional[bool] = None):
        self.settings = get_settings()
        self.query_parser = query_parser
        self.db = db_recommender
        self.ai = ai_recommender
        self.cache = cache
        self.metrics = metrics or SearchMetrics()
        self.progressive = self.settings.progressive_ai_results if progressive is None else progressive

    async def stream(self, request: SearchRequest, request_id: Optional[str] = None) -> AsyncIterator[StreamEvent]:
        """Yield the events of one search.

        ``metadata`` always comes first. The stream ends with ``complete``,
        or with ``error`` when the search could not be carried out. Closing
        the generator cancels any work still in flight.
        """
        request_id = request_id or uuid.uuid4().hex[:12]
        logger = create_logger("search", request_id)
        sort_by = request.sort_by.value
        cache_key = SearchCache.create_key(request.query, request.lat, request.long, request.tastes, sort_by)
        cached = self.cache.get(cache_key)

        await self.metrics.increment_counter("searches_total", labels={"kind": "query" if request.uses_query else "tastes"})
        await self.metrics.increment_counter("cache_hits_total" if cached is not None else "cache_misses_total")

        yield StreamEvent(type=EventType.METADATA, data={
            "requestId": request_id,
            "query": request.query,
            "tastes": request.tastes,
            "location": request.location.model_dump(),
            "sortBy": sort_by,
            "cached": cached is not None,
        })

        if cached is not None:
            logger.info("⚡ Serving search from cache")
            yield StreamEvent(type=EventType.DB_RESULTS, data=cached["dbResults"])
            yield StreamEvent(type=EventType.AI_RESULTS, data=cached["aiResults"])
            yield StreamEvent(type=EventType.COMPLETE, data={"requestId": request_id, "cached": True})
            return

        tasks: List[asyncio.Task] = []
        try:
            if request.uses_query:
                yield StreamEvent(type=EventType.AI_PROGRESS, data={"stage": "parsing"})
            parsed = await self.parse(request)
            logger.info(f"🔍 Searching for '{parsed.dish_name}' ({parsed.cuisine}) near {request.location.label()}")
            yield StreamEvent(type=EventType.AI_PROGRESS, data={
                "stage": "parsed",
                "parsedQuery": parsed.model_dump(by_alias=True),
            })

            queue: asyncio.Queue = asyncio.Queue()
            tasks = [
                asyncio.create_task(self._run_db(request, parsed, queue)),
                asyncio.create_task(self._run_ai(request, parsed, queue)),
            ]

            db_results: List[Dict[str, Any]] = []
            ai_outcome: Optional[AIRecommendationResult] = None
            pending = len(tasks)
            while pending:
                kind, payload = await queue.get()
                if kind == "progress":
                    yield StreamEvent(type=EventType.AI_PROGRESS, data=payload)
                    continue
                if kind == "failed":
                    raise payload

                pending -= 1
                if kind == "db":
                    db_results = dump_recommendations(payload)
                    yield StreamEvent(type=EventType.DB_RESULTS, data=db_results)
                else:
                    ai_outcome = payload
                    for event in self._ai_events(ai_outcome, logger):
                        yield event

            yield StreamEvent(type=EventType.COMPLETE, data={
                "requestId": request_id,
                "dbCount": len(db_results),
                "aiCount": len(ai_outcome.results) if ai_outcome and not ai_outcome.error else 0,
            })

            if ai_outcome is not None and ai_outcome.error is None:
                self.cache.set(cache_key, {
                    "dbResults": db_results,
                    "aiResults": dump_recommendations(ai_outcome.results),
                })
        except Exception as e:
            logger.error(f"❌ Search failed: {e}")
            await self.metrics.increment_counter("search_errors_total")
            yield StreamEvent(type=EventType.ERROR, data={"message": "Search failed. Please try again."})
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    def _ai_events(self, outcome: AIRecommendationResult, logger) -> List[StreamEvent]:
        """Results first (the placeholder card when the model failed), then ``aiError`` if any."""
        if self.progressive:
            events = [StreamEvent(type=EventType.AI_DISH, data=dish.model_dump()) for dish in outcome.results]
        else:
            events = [StreamEvent(type=EventType.AI_RESULTS, data=dump_recommendations(outcome.results))]

        if outcome.error is not None:
            logger.warning(f"⚠️ AI recommendations unavailable: {outcome.error}")
            events.append(StreamEvent(type=EventType.AI_ERROR, data={
                "message": "AI recommendations are unavailable right now.",
            }))
        return events

    async def _run_db(self, request: SearchRequest, parsed: ParsedQuery, queue: asyncio.Queue):
        try:
            results = await self.run_db(request.tastes or parsed.dish_name, request.location, request.sort_by)
        except Exception as e:
            await queue.put(("failed", e))
            return
        await queue.put(("db", results))

    async def _run_ai(self, request: SearchRequest, parsed: ParsedQuery, queue: asyncio.Queue):
        async def on_progress(data: Dict[str, Any]):
            await queue.put(("progress", data))

        try:
            outcome = await self.run_ai(parsed, request.location, request.tastes, request.sort_by, on_progress)
        except Exception as e:
            await queue.put(("failed", e))
            return
        await queue.put(("ai", outcome))

    async def run_db(self, terms, location: Location, sort_by: SortBy = SortBy.DISTANCE) -> List[DishRecommendation]:
        """Deduplicated database recommendations, timed."""
        start = time.perf_counter()
        results = await self.db.recommend(terms, location, sort_by)
        await self.metrics.record_histogram("db_time_ms", (time.perf_counter() - start) * 1000)
        return deduplicate_results(results)

    async def run_ai(self, parsed: ParsedQuery, location: Location, tastes: Optional[List[str]] = None,
                     sort_by: SortBy = SortBy.DISTANCE, on_progress=None) -> AIRecommendationResult:
        """Deduplicated AI recommendations.

        Model and runtime failures are reported on the result with the placeholder
        card; a malformed prompt (PromptConstructionError) is raised.
        """
        try:
            outcome = await self.ai.recommend(parsed, location, tastes, sort_by, on_progress)
        except PromptConstructionError:
            raise
        except Exception as e:
            outcome = AIRecommendationResult(results=[placeholder_recommendation()], error=str(e) or type(e).__name__)

        if outcome.error is not None:
            await self.metrics.increment_counter("ai_errors_total")
            return outcome

        if outcome.timing is not None:
            await self.metrics.record_histogram("ai_total_time_ms", outcome.timing.total_time)
            await self.metrics.record_histogram("ai_time_to_first_token_ms", outcome.timing.time_to_first_token)
        outcome.results = deduplicate_results(outcome.results)
        return outcome

    async def parse(self, request: SearchRequest) -> ParsedQuery:
        if request.uses_query:
            return await self.query_parser.parse_query(request.query)
        return QueryParser.from_tastes(request.tastes)
