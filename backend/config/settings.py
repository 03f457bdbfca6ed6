from pydantic_settings import BaseSettings
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables can come from:
    - docker-compose.yml environment section
    - .env file (for secrets like API keys)
    - System environment

    Weave policy knobs are prefixed WEAVE_ (e.g. WEAVE_ABSORPTION_THRESHOLD).
    """

    # Environment
    environment: str = "development"

    # Neo4j (from docker-compose)
    neo4j_uri: str = "bolt://localhost:7687"
    neo4j_user: str = "neo4j"
    neo4j_password: str = "weave_neo4j_pass"
    neo4j_database: str = "neo4j"

    # OpenAI (from .env)
    openai_api_key: str = ""
    openai_model: str = "gpt-4o"
    openai_timeout_seconds: float = 60.0

    # Vector index for signal embeddings
    weave_embedding_dimensions: int = 1536

    # Redis
    redis_url: str = "redis://localhost:6379"

    # Reconciliation bands (cosine similarity)
    weave_dedup_threshold: float = 0.85
    weave_corroborate_threshold: float = 0.92
    weave_max_confidence_boost: float = 0.3

    # Story materialization
    weave_source_key: str = "domain"
    weave_min_respondents: int = 2
    weave_min_sources: int = 2
    weave_absorption_threshold: float = 0.5
    weave_mega_tension_threshold: int = 30

    # Arc lifecycle, counted in runs
    weave_fading_after_quiet_runs: int = 3
    weave_cold_after_quiet_runs: int = 6
    weave_sustain_runs: int = 2

    # Curiosity
    weave_curiosity_max_attempts: int = 3
    weave_curiosity_max_per_run: int = 10

    # Budget (cents, 0 = unlimited)
    weave_run_budget_cents: int = 0
    weave_synthesis_cost_cents: int = 10
    weave_investigation_cost_cents: int = 5

    # Supervisor
    weave_finding_expiry_days: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra env vars

    @field_validator('weave_source_key', mode='before')
    @classmethod
    def check_source_key(cls, v):
        """Only 'domain' and 'url' source identities are supported"""
        v = (v or 'domain').lower()
        if v not in ('domain', 'url'):
            raise ValueError(f"weave_source_key must be 'domain' or 'url', got {v!r}")
        return v

    @field_validator('weave_corroborate_threshold')
    @classmethod
    def check_bands(cls, v, info):
        """Corroboration band must sit at or above the dedup band"""
        low = info.data.get('weave_dedup_threshold', 0.85)
        if v < low:
            raise ValueError(f"weave_corroborate_threshold ({v}) below weave_dedup_threshold ({low})")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
