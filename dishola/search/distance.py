"""
Distance, deduplication and ordering helpers for dish recommendations.
"""
import math
import re
from typing import Any, Callable, Iterable, List, Sequence, TypeVar, Union

from dishola.search.models import DishRecommendation, SortBy

EARTH_RADIUS_MILES = 3959
EARTH_RADIUS_METERS = 6371e3

# Distance given to restaurants without coordinates so they sort last
SENTINEL_DISTANCE = 999.0

# Primary-key differences below this are ties
TIE_THRESHOLD = 0.1
_TIE_EPSILON = 1e-9

_DISTANCE_PATTERN = re.compile(r"(\d+\.?\d*)\s*mi")

Number = Union[str, float, int, None]
T = TypeVar("T")


def _to_float(value: Number) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def calculate_distance(lat1: Number, lon1: Number, lat2: Number, lon2: Number, unit: str = "mi") -> float:
    """Great-circle distance between two points, rounded to one decimal.

    Coordinates may be numbers or numeric strings. Malformed input yields NaN
    rather than raising; check with ``math.isnan`` before use.
    """
    radius = EARTH_RADIUS_METERS if unit == "m" else EARTH_RADIUS_MILES

    lat1_f, lon1_f = _to_float(lat1), _to_float(lon1)
    lat2_f, lon2_f = _to_float(lat2), _to_float(lon2)
    if not all(math.isfinite(v) for v in (lat1_f, lon1_f, lat2_f, lon2_f)):
        return math.nan

    d_lat = math.radians(lat2_f - lat1_f)
    d_lon = math.radians(lon2_f - lon1_f)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1_f)) * math.cos(math.radians(lat2_f)) * math.sin(d_lon / 2) ** 2
    )
    if math.isnan(a):
        return math.nan
    a = min(1.0, max(0.0, a))

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(radius * c, 1)


def distance_or_sentinel(lat1: Number, lon1: Number, lat2: Number, lon2: Number) -> float:
    """Distance in miles, or SENTINEL_DISTANCE when the target lacks usable coordinates."""
    if not lat2 or not lon2:
        return SENTINEL_DISTANCE
    distance = calculate_distance(lat1, lon1, lat2, lon2)
    if math.isnan(distance):
        return SENTINEL_DISTANCE
    return distance


def format_distance(miles: float) -> str:
    return f"{miles:.1f} mi"


def parse_distance(value: Union[str, float, int, None]) -> float:
    """Read a distance back from "1.2 mi" (or a plain number); unknown is infinity."""
    if value is None or value == "":
        return math.inf
    if isinstance(value, (int, float)):
        return float(value)
    match = _DISTANCE_PATTERN.search(value)
    return float(match.group(1)) if match else math.inf


def parse_rating(value: Any) -> float:
    rating = _to_float(value)
    return 0.0 if math.isnan(rating) else rating


def make_recommendation_id(dish_name: str, restaurant_name: str, index: int) -> str:
    """Request-scoped id: slug(dish)-slug(restaurant)-index."""
    return f"{_slug(dish_name)}-{_slug(restaurant_name)}-{index}"


def _slug(name: str) -> str:
    return re.sub(r"\s+", "_", name or "")


def dedup_key(dish_name: str, restaurant_name: str) -> str:
    return f"{(dish_name or '').lower().strip()}-{(restaurant_name or '').lower().strip()}"


def deduplicate_results(results: Iterable[DishRecommendation]) -> List[DishRecommendation]:
    """Keep the first recommendation for each (dish name, restaurant name) pair."""
    seen = set()
    unique = []
    for result in results:
        key = dedup_key(result.dish.name, result.restaurant.name)
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


def sort_by_preference(
    items: Sequence[T],
    sort_by: Union[SortBy, str],
    distance_key: Callable[[T], float],
    rating_key: Callable[[T], float],
) -> List[T]:
    """Order items by distance or rating, breaking near-ties on the other key.

    Items are first ordered strictly by the primary key. Runs whose primary
    values sit within TIE_THRESHOLD of the run's first item are then reordered
    by the secondary key. Every pair further apart than the threshold keeps its
    primary order, so adjacent items never invert by more than the threshold.
    """
    if SortBy(sort_by) == SortBy.RATING:
        primary = lambda item: -rating_key(item)
        secondary = distance_key
    else:
        primary = distance_key
        secondary = lambda item: -rating_key(item)

    ordered = sorted(items, key=lambda item: (primary(item), secondary(item)))

    result: List[T] = []
    group: List[T] = []
    group_start = None
    for item in ordered:
        value = primary(item)
        if group and value - group_start < TIE_THRESHOLD - _TIE_EPSILON:
            group.append(item)
            continue
        result.extend(sorted(group, key=secondary))
        group = [item]
        group_start = value
    result.extend(sorted(group, key=secondary))
    return result
