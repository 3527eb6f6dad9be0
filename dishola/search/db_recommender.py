"""
Dish recommendations from the Supabase dishes table.
"""
import asyncio
import math
from typing import Any, Dict, List, Optional, Sequence, Union

from supabase import Client, create_client
from dishola.search.distance import (
    distance_or_sentinel,
    format_distance,
    make_recommendation_id,
    sort_by_preference,
)
from dishola.search.models import DishInfo, DishRecommendation, Location, RestaurantInfo, SortBy
from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger

DISH_COLUMNS = (
    "id,name,vote_avg,vote_count,"
    "restaurant:restaurants(id,name,address_line1,city,state,latitude,longitude)"
)


def _vote_average(value: Any) -> float:
    """Average vote as a float; missing or malformed values count as 0."""
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


class DatabaseRecommender:
    """Substring search over known dishes, filtered by radius and sorted by preference."""

    def __init__(self, client: Optional[Client] = None):
        self.settings = get_settings()
        self.client = client
        if self.client is None and self.settings.supabase_url and self.settings.supabase_key:
            self.client = create_client(self.settings.supabase_url, self.settings.supabase_key)
        if self.client is None:
            app_logger.warning("⚠️ Supabase not configured; database recommendations disabled")

    async def recommend(self, terms: Union[str, Sequence[str]], location: Location,
                        sort_by: SortBy = SortBy.DISTANCE) -> List[DishRecommendation]:
        """Top matches for one dish name or the union of several taste terms.

        Failures are logged and produce an empty list.
        """
        if isinstance(terms, str):
            terms = [terms]
        terms = [term.strip() for term in terms if term and term.strip()]
        if not terms or self.client is None:
            return []

        try:
            batches = await asyncio.gather(*(self._fetch(term) for term in terms))
            rows = []
            seen_ids = set()
            for batch in batches:
                for row in batch:
                    row_id = row.get("id")
                    if row_id is not None and row_id in seen_ids:
                        continue
                    seen_ids.add(row_id)
                    rows.append(row)
            results = self.rank(rows, location, sort_by)
        except Exception as e:
            app_logger.error(f"❌ Database search error for {terms}: {e}")
            return []

        app_logger.info(f"🗄️ Database returned {len(rows)} candidates, {len(results)} within range")
        return results

    async def _fetch(self, term: str) -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(
            lambda: self.client.table("dishes")
            .select(DISH_COLUMNS)
            .ilike("name", f"%{term}%")
            .limit(self.settings.db_candidate_limit)
            .execute()
        )
        return response.data or []

    def rank(self, rows: List[Dict[str, Any]], location: Location,
             sort_by: SortBy = SortBy.DISTANCE) -> List[DishRecommendation]:
        """Convert raw rows, drop far-away ones, sort and keep the best."""
        candidates = []
        for idx, row in enumerate(rows):
            restaurant = row.get("restaurant") or {}
            if not row.get("name") or not restaurant.get("name"):
                continue

            lat = restaurant.get("latitude")
            lng = restaurant.get("longitude")
            distance = distance_or_sentinel(location.lat, location.long, lat, lng)
            if distance > self.settings.db_radius_miles:
                continue

            vote_avg = _vote_average(row.get("vote_avg"))
            address = ", ".join(
                str(part) for part in (restaurant.get("address_line1"), restaurant.get("city"), restaurant.get("state"))
                if part
            )
            recommendation = DishRecommendation(
                id=make_recommendation_id(row["name"], restaurant["name"], idx),
                dish=DishInfo(
                    name=row["name"],
                    description="",
                    rating=f"{vote_avg / 2:.1f}" if vote_avg else "0",
                ),
                restaurant=RestaurantInfo(
                    name=restaurant["name"],
                    address=address,
                    lat=str(lat) if lat else "",
                    lng=str(lng) if lng else "",
                    website="",
                ),
            )
            candidates.append((recommendation, distance, vote_avg))

        ordered = sort_by_preference(
            candidates,
            sort_by,
            distance_key=lambda item: item[1],
            rating_key=lambda item: item[2],
        )

        results = []
        for recommendation, distance, _ in ordered[: self.settings.db_result_limit]:
            recommendation.distance = format_distance(distance)
            results.append(recommendation)
        return results
