"""
Query parser for extracting the dish name and cuisine from free-text searches.
"""
import json
from typing import List, Optional

from pydantic import ValidationError
from dishola.cache.cache_manager import CacheManager
from dishola.search.llm_client import LLMClient
from dishola.search.models import ParsedQuery
from dishola.search.response_parser import strip_code_fences
from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger

PARSE_PROMPT = """Parse this food search query into structured data. Extract:
- dishName: specific dish or food item
- cuisine: nationality/type (Italian, Mexican, Asian, American, etc.)

Query: "{query}"

Respond with valid, strict JSON only. Do not include comments, trailing commas, or single quotes. Only use double quotes for property names and string values."""


class QueryParser:
    """Turn a user query into a ParsedQuery using a single LLM call."""

    def __init__(self, llm_client: Optional[LLMClient] = None, cache: Optional[CacheManager] = None):
        self.settings = get_settings()
        self.llm = llm_client or LLMClient()
        self.cache = cache

    async def parse_query(self, query: str) -> ParsedQuery:
        """Parse a query; falls back to the raw text as the dish name on any failure."""
        cache_key = f"parsed_query:{(query or '').strip().lower()}"
        if self.cache:
            cached = await self.cache.get_json(cache_key)
            if cached:
                try:
                    app_logger.info("🧠 Parsed query cache hit")
                    return ParsedQuery.model_validate(cached)
                except ValidationError:
                    app_logger.warning(f"Ignoring malformed cached parse for '{query}'")

        parsed = await self._parse_with_llm(query)
        if parsed is None:
            return self.fallback(query)

        if self.cache:
            await self.cache.set_json(
                cache_key,
                parsed.model_dump(by_alias=True),
                expire=self.settings.parsed_query_cache_ttl_seconds,
            )
        return parsed

    async def _parse_with_llm(self, query: str) -> Optional[ParsedQuery]:
        try:
            content = await self.llm.complete(
                PARSE_PROMPT.format(query=query),
                temperature=0.3,
                max_tokens=200,
                model=self.settings.parser_model,
            )
        except Exception as e:
            app_logger.error(f"Error parsing query '{query}': {e}")
            return None

        app_logger.debug(f"🤖 Raw parse response for '{query}': {content}")
        try:
            data = json.loads(strip_code_fences(content))
            return ParsedQuery.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            app_logger.warning(f"Unusable parse response for '{query}': {e}")
            return None

    @staticmethod
    def fallback(query: str) -> ParsedQuery:
        return ParsedQuery(dishName=query, cuisine="Any")

    @staticmethod
    def from_tastes(tastes: List[str]) -> ParsedQuery:
        """Taste searches skip the LLM: the tastes are the dish name."""
        return ParsedQuery(dishName=", ".join(tastes), cuisine="Any")
