import json
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from dishola.cache.search_cache import SearchCache
from dishola.monitoring.metrics_collector import SearchMetrics
from dishola.search.ai_recommender import AIRecommender
from dishola.search.models import DishInfo, DishRecommendation, Location, RestaurantInfo
from dishola.search.orchestrator import SearchOrchestrator
from dishola.search.query_parser import QueryParser

USER_LOCATION = Location(lat="37.7897", long="-122.3942", address="100 First St, San Francisco, CA")

AI_PAYLOAD = [
    {
        "dish": {"name": "Pepperoni Slice", "description": "Crisp and greasy", "rating": "4.4"},
        "restaurant": {"name": "Golden Boy", "address": "542 Green St", "lat": "37.7997", "lng": "-122.4085", "website": None},
    },
    {
        "dish": {"name": "Margherita", "description": "Wood fired", "rating": "4.7"},
        "restaurant": {"name": "Tony's", "address": "1570 Stockton St", "lat": "37.7900", "lng": "-122.3940", "website": "https://tonys.example"},
    },
]


class FakeLLM:
    """Stands in for LLMClient: canned completion text and streamed chunks."""

    def __init__(self, chunks: Optional[List[str]] = None, completion: str = "", error: Optional[Exception] = None):
        self.chunks = chunks or []
        self.completion = completion
        self.error = error
        self.prompts: List[str] = []

    async def complete(self, prompt, **kwargs):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.completion

    async def stream_text(self, prompt, **kwargs):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        for chunk in self.chunks:
            yield chunk


def chunked(text: str, size: int = 40) -> List[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


def make_rec(dish: str, restaurant: str, rating: str = "4.0", distance: Optional[str] = None,
             idx: int = 0) -> DishRecommendation:
    return DishRecommendation(
        id=f"{dish}-{restaurant}-{idx}",
        dish=DishInfo(name=dish, description="", rating=rating),
        restaurant=RestaurantInfo(name=restaurant, address="", lat="37.79", lng="-122.39", website=""),
        distance=distance,
    )


def supabase_client(rows):
    """MagicMock mirroring supabase-py's table().select().ilike().limit().execute() chain."""
    client = MagicMock()
    query = client.table.return_value.select.return_value
    query.ilike.return_value.limit.return_value.execute.return_value = SimpleNamespace(data=rows)
    return client


@pytest.fixture
def ai_payload_text():
    return "```json\n" + json.dumps(AI_PAYLOAD) + "\n```"


@pytest.fixture
def db_results():
    return [
        make_rec("Pizza Bianca", "Tony's", rating="4.5", distance="0.2 mi", idx=0),
        make_rec("Pizza Bianca", "tony's ", rating="4.5", distance="0.2 mi", idx=1),
        make_rec("Veggie Pizza", "Golden Boy", rating="3.5", distance="1.1 mi", idx=2),
    ]


@pytest.fixture
def build_orchestrator(ai_payload_text, db_results):
    """Factory for an orchestrator over fake LLM and database collaborators."""

    def _build(llm: Optional[FakeLLM] = None, db=None, progressive: bool = True, cache: Optional[SearchCache] = None):
        llm = llm or FakeLLM(
            chunks=chunked(ai_payload_text),
            completion='{"dishName": "pizza", "cuisine": "Italian"}',
        )
        if db is None:
            db = MagicMock()
            db.recommend = AsyncMock(return_value=db_results)
        return SearchOrchestrator(
            query_parser=QueryParser(llm, cache=None),
            db_recommender=db,
            ai_recommender=AIRecommender(llm),
            cache=cache or SearchCache(ttl_seconds=600),
            metrics=SearchMetrics(),
            progressive=progressive,
        )

    return _build
