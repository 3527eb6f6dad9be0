"""
Data models shared by the search pipeline and the stream consumer.
"""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SortBy(str, Enum):
    DISTANCE = "distance"
    RATING = "rating"


class EventType(str, Enum):
    METADATA = "metadata"
    DB_RESULTS = "dbResults"
    AI_PROGRESS = "aiProgress"
    AI_DISH = "aiDish"
    AI_RESULTS = "aiResults"
    COMPLETE = "complete"
    ERROR = "error"
    AI_ERROR = "aiError"


class Location(BaseModel):
    """User location as received from the request (numeric strings)."""
    lat: str
    long: str
    address: str = ""

    def label(self) -> str:
        return self.address or f"{self.lat},{self.long}"


class ParsedQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dish_name: str = Field(..., alias="dishName", min_length=1)
    cuisine: str = "Any"


class DishInfo(BaseModel):
    name: str
    description: str = ""
    rating: str


class RestaurantInfo(BaseModel):
    name: str
    address: str = ""
    lat: str = ""
    lng: str = ""
    website: Optional[str] = None


class DishRecommendation(BaseModel):
    id: str
    dish: DishInfo
    restaurant: RestaurantInfo
    distance: Optional[str] = None


class SearchRequest(BaseModel):
    """One search interaction: a free-text query or a list of tastes."""
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    tastes: List[str] = Field(default_factory=list)
    lat: str
    long: str
    address: str = ""
    sort_by: SortBy = Field(SortBy.DISTANCE, alias="sortBy")

    @field_validator("query")
    @classmethod
    def _blank_query_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("tastes")
    @classmethod
    def _clean_tastes(cls, value: List[str]) -> List[str]:
        return [taste.strip() for taste in value if taste and taste.strip()]

    @model_validator(mode="after")
    def _query_or_tastes(self) -> "SearchRequest":
        if not self.query and not self.tastes:
            raise ValueError("either 'q' (query) or 'tastes' is required")
        if self.query:
            # query wins when both are present
            self.tastes = []
        return self

    @property
    def uses_query(self) -> bool:
        return bool(self.query)

    @property
    def location(self) -> Location:
        return Location(lat=self.lat, long=self.long, address=self.address)

    @classmethod
    def from_params(cls, q: Optional[str], tastes: Optional[str], lat: str, long: str,
                    sort: str = "distance", address: str = "") -> "SearchRequest":
        """Build a request from raw query-string values (comma separated tastes)."""
        taste_list = tastes.split(",") if tastes else []
        return cls(query=q, tastes=taste_list, lat=lat, long=long, address=address, sortBy=sort)


class StreamEvent(BaseModel):
    type: EventType
    data: Any = None

    def to_line(self) -> str:
        """Serialize as one line of newline-delimited JSON."""
        return self.model_dump_json() + "\n"


class AITiming(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_time: int = Field(0, alias="totalTime")
    time_to_first_token: int = Field(0, alias="timeToFirstToken")
    estimated_tokens: int = Field(0, alias="estimatedTokens")
    avg_tokens_per_second: float = Field(0.0, alias="avgTokensPerSecond")


class AIRecommendationResult(BaseModel):
    """Outcome of one AI recommendation run."""
    results: List[DishRecommendation] = Field(default_factory=list)
    timing: Optional[AITiming] = None
    error: Optional[str] = None


def dump_recommendations(recommendations: List[DishRecommendation]) -> List[Dict[str, Any]]:
    return [rec.model_dump() for rec in recommendations]


