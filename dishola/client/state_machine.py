"""
Client-side search state.

A SearchSession holds everything a UI renders for one search and moves
through an explicit set of states as stream events arrive.
"""
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from dishola.search.distance import dedup_key, parse_distance, parse_rating, sort_by_preference
from dishola.search.models import DishRecommendation, EventType, SortBy, StreamEvent
from dishola.utils.logger import app_logger


class SearchState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"


TRANSITIONS = {
    SearchState.IDLE: {SearchState.SEARCHING},
    SearchState.SEARCHING: {SearchState.STREAMING, SearchState.COMPLETE, SearchState.ERROR, SearchState.IDLE},
    SearchState.STREAMING: {SearchState.COMPLETE, SearchState.ERROR, SearchState.IDLE},
    SearchState.COMPLETE: {SearchState.SEARCHING, SearchState.IDLE},
    SearchState.ERROR: {SearchState.SEARCHING, SearchState.IDLE},
}

_RATE_LIMIT_PATTERN = re.compile(r"rate limit|too many requests|\b429\b", re.IGNORECASE)


class InvalidTransitionError(RuntimeError):
    def __init__(self, current: SearchState, target: SearchState):
        super().__init__(f"Cannot move from {current.value} to {target.value}")
        self.current = current
        self.target = target


def classify_error(message: str) -> str:
    return "rate_limited" if _RATE_LIMIT_PATTERN.search(message or "") else "general"


@dataclass
class TaggedDish:
    source: str  # "ai" or "db"
    recommendation: DishRecommendation


class SearchSession:
    """Per-search state driven by stream events."""

    def __init__(self, sort_by: Union[SortBy, str] = SortBy.DISTANCE, clock: Callable[[], float] = time.monotonic):
        self.sort_by = SortBy(sort_by)
        self._clock = clock
        self.state = SearchState.IDLE
        self.has_searched = False
        self._clear()

    def _clear(self):
        self.ai_dishes: List[DishRecommendation] = []
        self.db_dishes: List[DishRecommendation] = []
        self.metadata: Dict[str, Any] = {}
        self.error: Optional[str] = None
        self.error_kind: Optional[str] = None
        self.ai_error: Optional[str] = None
        self.status = ""
        self.ai_progress: Optional[Dict[str, Any]] = None
        self.time_to_first_dish: Optional[int] = None
        self.db_results_received = False
        self.ai_results_received = False
        self._ai_dish_received = False
        self._started_at: Optional[float] = None

    @property
    def is_searching(self) -> bool:
        return self.state in (SearchState.SEARCHING, SearchState.STREAMING)

    @property
    def is_finished(self) -> bool:
        return self.state in (SearchState.COMPLETE, SearchState.ERROR)

    def transition(self, target: SearchState):
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        self.state = target

    def start(self, sort_by: Optional[Union[SortBy, str]] = None):
        """Begin a new search, discarding the previous one's results."""
        self.transition(SearchState.SEARCHING)
        self._clear()
        if sort_by is not None:
            self.sort_by = SortBy(sort_by)
        self.has_searched = True
        self.status = "Searching..."
        self._started_at = self._clock()

    def reset(self):
        """Abandon the search (e.g. it was superseded) and return to idle."""
        if self.state != SearchState.IDLE:
            self.transition(SearchState.IDLE)
        self.status = ""

    def fail(self, message: str, kind: Optional[str] = None):
        self.transition(SearchState.ERROR)
        self.error = message
        self.error_kind = kind or classify_error(message)
        self.status = ""

    def apply(self, event: Union[StreamEvent, Dict[str, Any]]):
        """Fold one stream event into the session."""
        if isinstance(event, dict):
            event = StreamEvent.model_validate(event)
        if self.is_finished or self.state == SearchState.IDLE:
            app_logger.debug(f"Ignoring {event.type.value} event in state {self.state.value}")
            return
        if self.state == SearchState.SEARCHING:
            self.transition(SearchState.STREAMING)

        handler = getattr(self, f"_on_{event.type.name.lower()}")
        handler(event.data)

    def _on_metadata(self, data):
        self.metadata = data or {}

    def _on_db_results(self, data):
        self.db_dishes = self._recommendations(data)
        self.db_results_received = True

    def _on_ai_progress(self, data):
        self.ai_progress = data or {}
        stage = self.ai_progress.get("stage")
        if stage == "parsing":
            self.status = "Understanding your search..."
        elif stage == "complete":
            self.status = "AI recommendations completed"
        else:
            self.status = "Generating AI recommendations..."

    def _on_ai_dish(self, data):
        self._ai_dish_received = True
        dish = self._recommendations([data])
        if not dish:
            return
        keys = {dedup_key(d.dish.name, d.restaurant.name) for d in self.ai_dishes}
        if dedup_key(dish[0].dish.name, dish[0].restaurant.name) in keys:
            return
        self.ai_dishes.append(dish[0])
        self._mark_first_dish()

    def _on_ai_results(self, data):
        self.ai_results_received = True
        if self._ai_dish_received:
            return
        self.ai_dishes = self._recommendations(data)
        if self.ai_dishes:
            self._mark_first_dish()

    def _on_ai_error(self, data):
        self.ai_error = (data or {}).get("message", "AI recommendations unavailable")
        self.ai_results_received = True
        self.status = f"AI error: {self.ai_error}"

    def _on_error(self, data):
        self.fail((data or {}).get("message", "Search failed"))

    def _on_complete(self, data):
        self.transition(SearchState.COMPLETE)
        self.status = "Search complete"

    def _mark_first_dish(self):
        if self.time_to_first_dish is None and self._started_at is not None:
            self.time_to_first_dish = int(round((self._clock() - self._started_at) * 1000))

    @staticmethod
    def _recommendations(items) -> List[DishRecommendation]:
        results = []
        for item in items or []:
            try:
                results.append(DishRecommendation.model_validate(item))
            except ValidationError as e:
                app_logger.debug(f"Skipping malformed dish: {e.error_count()} errors")
        return results

    def merged_dishes(self) -> List[TaggedDish]:
        """AI and community dishes in one list, ordered by the session's sort preference."""
        tagged = [TaggedDish("ai", rec) for rec in self.ai_dishes]
        tagged += [TaggedDish("db", rec) for rec in self.db_dishes]
        return sort_by_preference(
            tagged,
            self.sort_by,
            distance_key=lambda item: parse_distance(item.recommendation.distance),
            rating_key=lambda item: parse_rating(item.recommendation.dish.rating),
        )
