"""
Cleaning, repair and validation of LLM recommendation payloads.

The model is asked for a strict JSON array, but responses arrive wrapped in
Markdown fences, cut off at the token limit, or with malformed elements.
Everything here degrades to an empty list instead of raising.
"""
import json
import re
from typing import Any, List, Optional

from pydantic import BaseModel, ValidationError, field_validator

from dishola.utils.logger import app_logger

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*(?:```)?$", re.DOTALL | re.IGNORECASE)
_DECODER = json.JSONDecoder()


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) wrapper."""
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        match = _FENCE_PATTERN.match(cleaned)
        if match:
            return match.group(1).strip()
    return cleaned


def repair_truncated_array(text: str) -> List[Any]:
    """Recover every complete leading element of a JSON array cut off mid-element.

    Returns an empty list when the text is not an array or no element is complete.
    """
    text = text.strip()
    if not text.startswith("["):
        return []

    recovered = []
    idx = 1
    length = len(text)
    while idx < length:
        while idx < length and text[idx] in " \t\r\n,":
            idx += 1
        if idx >= length or text[idx] == "]":
            break
        try:
            element, idx = _DECODER.raw_decode(text, idx)
        except json.JSONDecodeError:
            break
        recovered.append(element)
    return recovered


def parse_json_payload(text: str) -> Optional[Any]:
    """Parse a model response into JSON, repairing truncation once.

    Returns None when the response cannot be interpreted at all.
    """
    cleaned = strip_code_fences(text)

    if not cleaned.startswith("[") and not cleaned.startswith("{"):
        app_logger.error(f"AI response doesn't look like JSON: {cleaned[:200]}...")
        return None

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        app_logger.error(
            f"JSON parse error ({e}); length={len(cleaned)} "
            f"preview={cleaned[:500]!r} ending={cleaned[-200:]!r}"
        )

    recovered = repair_truncated_array(cleaned)
    if not recovered:
        app_logger.error("Truncated JSON repair recovered nothing")
        return None
    app_logger.debug(f"Recovered {len(recovered)} elements from truncated JSON")
    return recovered


def _as_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class LLMDish(BaseModel):
    name: str
    description: str = ""
    rating: str

    @field_validator("name", "rating", mode="before")
    @classmethod
    def _required_text(cls, value: Any) -> Any:
        value = _as_text(value)
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @field_validator("description", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return "" if value is None else _as_text(value)


class LLMRestaurant(BaseModel):
    name: str
    address: str = ""
    lat: str = ""
    lng: str = ""
    website: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _required_name(cls, value: Any) -> Any:
        if not isinstance(value, str) or not value.strip():
            raise ValueError("must be a non-empty string")
        return value.strip()

    @field_validator("address", "lat", "lng", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Any:
        return "" if value is None else _as_text(value)


class LLMRecommendation(BaseModel):
    """Expected shape of one element of the model's JSON array."""
    dish: LLMDish
    restaurant: LLMRestaurant


def validate_recommendations(payload: Any) -> List[LLMRecommendation]:
    """Keep only elements matching the recommendation schema."""
    if not isinstance(payload, list):
        app_logger.error(f"AI response is not an array: {type(payload).__name__}")
        return []

    valid = []
    for element in payload:
        try:
            valid.append(LLMRecommendation.model_validate(element))
        except ValidationError as e:
            app_logger.debug(f"Dropping invalid recommendation: {e.error_count()} errors")
    if not valid:
        app_logger.error("No valid results from AI response")
    return valid
