"""
Configuration management for the Dishola search service.
"""
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # LLM gateway (OpenAI-compatible)
    llm_api_key: str = Field("", description="API key for the LLM gateway")
    llm_base_url: str = Field("https://ai-gateway.vercel.sh/v1", description="OpenAI-compatible gateway base URL")
    search_model: str = Field("anthropic/claude-3-5-sonnet-20241022", description="Model used for dish recommendations")
    parser_model: Optional[str] = Field(None, description="Model used for query parsing (defaults to search_model)")
    llm_temperature: float = Field(0.3, description="Temperature")
    llm_max_tokens: int = Field(4000, description="Max output tokens for recommendations")
    llm_timeout: float = Field(55.0, description="LLM request timeout in seconds")

    # Supabase
    supabase_url: str = Field("", description="Supabase project URL")
    supabase_key: str = Field("", description="Supabase service role key")

    # Redis
    redis_url: str = Field("redis://localhost:6379", description="Redis URL")

    # Application
    environment: str = Field("development", description="Environment")
    log_level: str = Field("INFO", description="Log level")
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "https://dishola.com"],
        description="Allowed CORS origins"
    )

    # Caching
    search_cache_ttl_seconds: int = Field(600, description="Search results cache TTL")
    search_cache_max_entries: int = Field(500, description="Max cached searches")
    parsed_query_cache_ttl_seconds: int = Field(86400, description="Parsed query cache TTL")

    # Search behaviour
    progressive_ai_results: bool = Field(True, description="Stream AI results one dish at a time")
    db_radius_miles: float = Field(75.0, description="Max distance for community results")
    db_candidate_limit: int = Field(50, description="Candidates fetched from the dishes table")
    db_result_limit: int = Field(15, description="Community results returned")
    progress_token_interval: int = Field(50, description="Emit a progress event every N streamed chunks")

    # Rate limiting
    max_requests_per_minute: int = Field(30, description="Search requests per client per minute")
    burst_limit: int = Field(10, description="Max requests in short burst")
    burst_window: int = Field(5, description="Seconds for burst window")
    max_query_length: int = Field(200, description="Max search query length")

    # Geocoding
    reverse_geocode_enabled: bool = Field(False, description="Use network reverse geocoding when bounding boxes miss")
    reverse_geocode_url: str = Field(
        "https://nominatim.openstreetmap.org/reverse",
        description="Nominatim-compatible reverse geocoding endpoint"
    )

    model_config = {
        "case_sensitive": False,
        "extra": "ignore"
    }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
