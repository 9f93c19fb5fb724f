"""Application settings using Pydantic."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    database_url: str = "sqlite:///callsense.db"

    # Inference
    default_engine: str = "ollama"

    # Transcript gates (agent scoring)
    min_transcript_words: int = 20
    short_transcript_threshold_words: int = 50
    short_transcript_confidence_cap: float = 0.3

    # Fallbacks feeding the default guardrails
    max_retries: int = 2
    personality_decay_half_life_days: float = 30.0

    # Characters of transcript sent per call point
    transcript_limit_measure: int = 4000
    transcript_limit_score_agent: int = 4000
    transcript_limit_adapt: int = 2500

    # Best-effort EXTRACT hooks
    artifacts_enabled: bool = True
    actions_enabled: bool = True

    # Logging
    log_level: str = "INFO"

    def transcript_limit(self, call_point: str) -> int:
        """Character limit for the transcript sent to a given call point."""
        limits = {
            "pipeline.measure": self.transcript_limit_measure,
            "pipeline.score_agent": self.transcript_limit_score_agent,
            "pipeline.adapt": self.transcript_limit_adapt,
        }
        return limits.get(call_point, 4000)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
