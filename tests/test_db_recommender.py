from unittest.mock import MagicMock

import pytest

from conftest import USER_LOCATION, supabase_client
from dishola.search.db_recommender import DISH_COLUMNS, DatabaseRecommender
from dishola.search.distance import parse_distance
from dishola.search.models import SortBy


def _row(idx, name, restaurant, lat, lng, vote_avg=8.0):
    return {
        "id": idx,
        "name": name,
        "vote_avg": vote_avg,
        "vote_count": 10,
        "restaurant": {
            "id": 100 + idx,
            "name": restaurant,
            "address_line1": "1 Main St",
            "city": "San Francisco",
            "state": "CA",
            "latitude": lat,
            "longitude": lng,
        },
    }


ROWS = [
    _row(1, "Burrito", "Far Away Cantina", 40.7128, -74.0060, vote_avg=10),
    _row(2, "Burrito", "La Taqueria", 37.7509, -122.4181, vote_avg=9.0),
    _row(3, "Super Burrito", "El Farolito", 37.7526, -122.4183, vote_avg=7.0),
    _row(4, "Burrito Bowl", "No Coords", None, None, vote_avg=9.5),
    _row(5, "Breakfast Burrito", "Next Door", 37.7900, -122.3940, vote_avg=None),
]


@pytest.mark.asyncio
async def test_queries_dishes_table_with_substring_match():
    client = supabase_client(ROWS)
    await DatabaseRecommender(client=client).recommend("burrito", USER_LOCATION)

    client.table.assert_called_with("dishes")
    client.table.return_value.select.assert_called_with(DISH_COLUMNS)
    client.table.return_value.select.return_value.ilike.assert_called_with("name", "%burrito%")
    client.table.return_value.select.return_value.ilike.return_value.limit.assert_called_with(50)


@pytest.mark.asyncio
async def test_results_within_radius_formatted_and_sorted():
    results = await DatabaseRecommender(client=supabase_client(ROWS)).recommend("burrito", USER_LOCATION)

    names = [r.restaurant.name for r in results]
    assert "Far Away Cantina" not in names
    assert "No Coords" not in names
    assert names[0] == "Next Door"
    for rec in results:
        assert parse_distance(rec.distance) <= 75
        assert rec.distance.endswith(" mi")


@pytest.mark.asyncio
async def test_rating_and_address_mapping():
    results = await DatabaseRecommender(client=supabase_client(ROWS)).recommend("burrito", USER_LOCATION)
    by_restaurant = {r.restaurant.name: r for r in results}

    assert by_restaurant["La Taqueria"].dish.rating == "4.5"
    assert by_restaurant["Next Door"].dish.rating == "0"
    assert by_restaurant["La Taqueria"].restaurant.address == "1 Main St, San Francisco, CA"
    assert by_restaurant["La Taqueria"].restaurant.website == ""
    assert by_restaurant["La Taqueria"].id.startswith("Burrito-La_Taqueria-")


@pytest.mark.asyncio
async def test_rating_sort_uses_vote_average():
    results = await DatabaseRecommender(client=supabase_client(ROWS)).recommend(
        "burrito", USER_LOCATION, SortBy.RATING
    )
    assert [r.restaurant.name for r in results][:2] == ["La Taqueria", "El Farolito"]


@pytest.mark.asyncio
async def test_results_truncated_to_limit():
    rows = [_row(i, f"Dish {i}", f"Place {i}", 37.79 + i * 0.001, -122.394) for i in range(40)]
    results = await DatabaseRecommender(client=supabase_client(rows)).recommend("dish", USER_LOCATION)
    assert len(results) == 15


@pytest.mark.asyncio
async def test_taste_terms_are_unioned_without_duplicate_rows():
    client = supabase_client(ROWS[1:3])
    results = await DatabaseRecommender(client=client).recommend(["spicy", "burrito"], USER_LOCATION)

    assert client.table.return_value.select.return_value.ilike.call_count == 2
    assert len(results) == 2


@pytest.mark.asyncio
async def test_query_failure_returns_empty_list():
    client = MagicMock()
    client.table.side_effect = RuntimeError("connection refused")

    assert await DatabaseRecommender(client=client).recommend("burrito", USER_LOCATION) == []


@pytest.mark.asyncio
async def test_blank_terms_skip_the_query():
    client = supabase_client(ROWS)
    assert await DatabaseRecommender(client=client).recommend(["  "], USER_LOCATION) == []
    client.table.assert_not_called()


@pytest.mark.asyncio
async def test_non_finite_user_location_returns_no_results():
    location = USER_LOCATION.model_copy(update={"lat": "inf"})
    assert await DatabaseRecommender(client=supabase_client(ROWS)).recommend("burrito", location) == []


@pytest.mark.asyncio
async def test_malformed_vote_average_counts_as_unrated():
    rows = [_row(1, "Burrito", "La Taqueria", 37.7509, -122.4181, vote_avg="n/a")]

    results = await DatabaseRecommender(client=supabase_client(rows)).recommend("burrito", USER_LOCATION)

    assert [r.dish.rating for r in results] == ["0"]
