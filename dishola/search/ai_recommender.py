"""
LLM-generated dish recommendations near a location.

The model response is streamed so callers can observe progress (first-token
latency, running token count) while the full JSON array accumulates.
"""
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from dishola.search.distance import (
    SENTINEL_DISTANCE,
    distance_or_sentinel,
    format_distance,
    make_recommendation_id,
    parse_rating,
    sort_by_preference,
)
from dishola.search.llm_client import LLMClient
from dishola.search.models import (
    AIRecommendationResult,
    AITiming,
    DishInfo,
    DishRecommendation,
    Location,
    ParsedQuery,
    RestaurantInfo,
    SortBy,
)
from dishola.search.response_parser import parse_json_payload, validate_recommendations
from dishola.utils.config import get_settings
from dishola.utils.logger import app_logger

ProgressCallback = Callable[[Dict[str, Any]], Awaitable[None]]

SORT_INSTRUCTIONS = {
    SortBy.RATING: (
        "PRIORITIZE the highest rated restaurants (4.5+ stars preferred) even if they are further away. "
        "Sort by rating first (highest to lowest), then consider distance as a secondary factor"
    ),
    SortBy.DISTANCE: (
        "PRIORITIZE the closest restaurants to the user's exact coordinates. FOCUS HEAVILY ON PROXIMITY: "
        "At least 8-10 results should be within 0.5 miles, and ALL results should be within 3 miles maximum. "
        "Sort by distance first (closest to furthest). Only consider rating as a secondary factor after distance"
    ),
}

RECOMMENDATION_PROMPT = """{intro} near the coordinates ({lat}, {long}).

SORTING REQUIREMENTS: {sort_instruction}

DISTANCE CONSTRAINTS:
- MANDATORY: At least 8 results MUST be within 0.5 miles of the coordinates
- MANDATORY: NO results should be more than 3 miles away
- Focus on walkable distance first, then nearby driving distance
- If you can't find enough results within 0.5 miles, expand gradually to 1 mile, then 2 miles maximum

LOCATION CONSTRAINT: All recommendations must be actual restaurants that exist near the provided coordinates. Calculate actual distances from the coordinates using precise latitude/longitude.

Return results as a JSON array with this structure:
[
  {{
    "dish": {{
      "name": "specific dish name",
      "description": "dish description",
      "rating": "rating out of 5 from google maps reviews"
    }},
    "restaurant": {{
      "name": "restaurant name",
      "address": "full address",
      "lat": "latitude of the restaurant",
      "lng": "longitude of the restaurant",
      "website": "Official restaurant website or null if not available"
    }}
  }}
]

Respond with valid, strict JSON only.
Do not include comments, trailing commas, or single quotes.
Only use double quotes for property names and string values."""


class PromptConstructionError(RuntimeError):
    """Built prompt is missing a required search parameter."""


def build_prompt(dish_name: str, location: Location, tastes: Optional[List[str]] = None,
                 sort_by: SortBy = SortBy.DISTANCE) -> str:
    intro = f"Return the top 15 best {dish_name} recommendations"
    if tastes:
        intro += f" that would appeal to someone who likes {', '.join(tastes)}"

    prompt = RECOMMENDATION_PROMPT.format(
        intro=intro,
        lat=location.lat,
        long=location.long,
        sort_instruction=SORT_INSTRUCTIONS[SortBy(sort_by)],
    )

    if not dish_name or dish_name not in prompt or not location.lat or not location.long \
            or location.lat not in prompt or location.long not in prompt:
        raise PromptConstructionError("Prompt is missing required search parameters.")
    return prompt


def placeholder_recommendation() -> DishRecommendation:
    """Single card shown when the model could not be reached."""
    return DishRecommendation(
        id="Error_generating_recommendations-Unknown-0",
        dish=DishInfo(
            name="Error generating recommendations",
            description="We couldn't generate personalized recommendations at this time. Please try again later.",
            rating="N/A",
        ),
        restaurant=RestaurantInfo(name="Unknown", address="N/A", lat="0", lng="0", website=None),
    )


class AIRecommender:
    """Ask the LLM for nearby dishes and turn its answer into sorted recommendations."""

    def __init__(self, llm_client: Optional[LLMClient] = None):
        self.settings = get_settings()
        self.llm = llm_client or LLMClient()

    async def recommend(self, parsed_query: ParsedQuery, location: Location,
                        tastes: Optional[List[str]] = None, sort_by: SortBy = SortBy.DISTANCE,
                        on_progress: Optional[ProgressCallback] = None) -> AIRecommendationResult:
        """Run one recommendation round. Model failures produce the placeholder card and an error."""
        prompt = build_prompt(parsed_query.dish_name, location, tastes, sort_by)

        try:
            text, timing = await self._generate(prompt, on_progress)
        except Exception as e:
            app_logger.error(f"❌ AI model error: {e}")
            return AIRecommendationResult(results=[placeholder_recommendation()], error=str(e) or type(e).__name__)

        results = self.process_response(text, location, sort_by)
        app_logger.info(f"🤖 AI produced {len(results)} recommendations for '{parsed_query.dish_name}'")
        return AIRecommendationResult(results=results, timing=timing)

    async def _generate(self, prompt: str, on_progress: Optional[ProgressCallback]) -> Tuple[str, AITiming]:
        start = time.perf_counter()
        first_token_at = None
        token_count = 0
        chunks = []

        async for chunk in self.llm.stream_text(
            prompt,
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        ):
            if first_token_at is None:
                first_token_at = time.perf_counter()
                ttft = _ms(first_token_at - start)
                app_logger.debug(f"First token received after {ttft}ms")
                if on_progress:
                    await on_progress({"stage": "firstToken", "timeToFirstToken": ttft})

            chunks.append(chunk)
            token_count += 1
            if on_progress and token_count % self.settings.progress_token_interval == 0:
                await on_progress({"stage": "streaming", "tokens": token_count})

        total = time.perf_counter() - start
        timing = AITiming(
            totalTime=_ms(total),
            timeToFirstToken=_ms(first_token_at - start) if first_token_at else _ms(total),
            estimatedTokens=token_count,
            avgTokensPerSecond=round(token_count / total, 2) if total > 0 else 0.0,
        )
        app_logger.info(
            f"⏱️ AI response completed: total={timing.total_time}ms "
            f"ttft={timing.time_to_first_token}ms tokens={timing.estimated_tokens}"
        )
        if on_progress:
            await on_progress({"stage": "complete", **timing.model_dump(by_alias=True)})
        return "".join(chunks), timing

    def process_response(self, text: str, location: Location,
                         sort_by: SortBy = SortBy.DISTANCE) -> List[DishRecommendation]:
        """Clean, repair, validate and sort a raw model response. Never raises."""
        payload = parse_json_payload(text)
        if payload is None:
            return []

        candidates = []
        for idx, rec in enumerate(validate_recommendations(payload)):
            distance = distance_or_sentinel(location.lat, location.long, rec.restaurant.lat, rec.restaurant.lng)
            recommendation = DishRecommendation(
                id=make_recommendation_id(rec.dish.name, rec.restaurant.name, idx),
                dish=DishInfo(**rec.dish.model_dump()),
                restaurant=RestaurantInfo(**rec.restaurant.model_dump()),
            )
            candidates.append((recommendation, distance, parse_rating(rec.dish.rating)))

        ordered = sort_by_preference(
            candidates,
            sort_by,
            distance_key=lambda item: item[1],
            rating_key=lambda item: item[2],
        )

        results = []
        for recommendation, distance, _ in ordered:
            if distance != SENTINEL_DISTANCE:
                recommendation.distance = format_distance(distance)
            results.append(recommendation)
        return results


def _ms(seconds: float) -> int:
    return int(round(seconds * 1000))
