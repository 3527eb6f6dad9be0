from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeLLM
from dishola.search.llm_client import LLMError
from dishola.search.query_parser import QueryParser


@pytest.mark.asyncio
async def test_parses_fenced_json():
    llm = FakeLLM(completion='```json\n{"dishName": "carbonara", "cuisine": "Italian"}\n```')
    parsed = await QueryParser(llm).parse_query("best carbonara downtown")

    assert parsed.dish_name == "carbonara"
    assert parsed.cuisine == "Italian"
    assert '"best carbonara downtown"' in llm.prompts[0]


@pytest.mark.asyncio
@pytest.mark.parametrize("completion", [
    "not json at all",
    '{"cuisine": "Thai"}',
    '{"dishName": ""}',
    '["pad thai"]',
])
async def test_unusable_response_falls_back_to_query(completion):
    parsed = await QueryParser(FakeLLM(completion=completion)).parse_query("pad thai")

    assert parsed.dish_name == "pad thai"
    assert parsed.cuisine == "Any"


@pytest.mark.asyncio
async def test_llm_failure_falls_back_to_query():
    parser = QueryParser(FakeLLM(error=LLMError("gateway down")))
    parsed = await parser.parse_query("ramen")
    assert parsed.model_dump(by_alias=True) == {"dishName": "ramen", "cuisine": "Any"}


@pytest.mark.asyncio
async def test_missing_cuisine_defaults_to_any():
    parsed = await QueryParser(FakeLLM(completion='{"dishName": "pho"}')).parse_query("pho")
    assert parsed.cuisine == "Any"


@pytest.mark.asyncio
async def test_successful_parse_is_cached():
    cache = MagicMock()
    cache.get_json = AsyncMock(return_value=None)
    cache.set_json = AsyncMock(return_value=True)
    parser = QueryParser(FakeLLM(completion='{"dishName": "tacos", "cuisine": "Mexican"}'), cache=cache)

    await parser.parse_query("  Tacos ")

    cache.get_json.assert_awaited_once_with("parsed_query:tacos")
    key, value = cache.set_json.await_args.args
    assert key == "parsed_query:tacos"
    assert value == {"dishName": "tacos", "cuisine": "Mexican"}


@pytest.mark.asyncio
async def test_cache_hit_skips_llm():
    cache = MagicMock()
    cache.get_json = AsyncMock(return_value={"dishName": "dumplings", "cuisine": "Chinese"})
    llm = FakeLLM(completion="unused")

    parsed = await QueryParser(llm, cache=cache).parse_query("dumplings")

    assert parsed.dish_name == "dumplings"
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_fallback_is_not_cached():
    cache = MagicMock()
    cache.get_json = AsyncMock(return_value=None)
    cache.set_json = AsyncMock()

    await QueryParser(FakeLLM(completion="nope"), cache=cache).parse_query("bagels")

    cache.set_json.assert_not_awaited()


def test_taste_search_joins_tastes():
    parsed = QueryParser.from_tastes(["spicy", "noodles"])
    assert parsed.dish_name == "spicy, noodles"
    assert parsed.cuisine == "Any"
