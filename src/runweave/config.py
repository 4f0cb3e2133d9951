"""Runtime configuration, read from ``RUNWEAVE_*`` environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="RUNWEAVE_", extra="ignore")

    # Remote run service
    base_url: str = "http://localhost:8787"
    api_key: str | None = None
    agent: str = "base"
    timeout_s: float = 300.0

    # Retry around the run call (not around individual events)
    max_retries: int = 3
    retry_base_delay_ms: int = 1_000
    retry_max_delay_ms: int = 8_000

    # Tree update batching
    flush_delay_ms: int = 48

    # Lift <PLAN>...</PLAN> payloads out of root text
    extract_plan: bool = True

    # Saved conversations (continuation token + last tree)
    state_dir: Path = Path(".runweave/conversations")

    log_level: str = "WARNING"


def get_settings(**overrides) -> Settings:
    return Settings(**overrides)
