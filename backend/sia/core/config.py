from functools import lru_cache
import json
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_ENV_FILE = Path(__file__).resolve().parents[2] / ".env"


class Settings(BaseSettings):
    # Resolve to backend/.env so `uvicorn --app-dir backend` works from any cwd.
    model_config = SettingsConfigDict(
        env_file=str(BACKEND_ENV_FILE),
        env_file_encoding="utf-8",
        env_prefix="SIA_",
    )

    project_name: str = "SIA Allocation Orchestrator"
    api_prefix: str = "/api"
    log_level: str = "INFO"

    scheduling_api_base_url: str = "http://localhost:8000"
    scheduling_api_timeout_seconds: float = 15.0
    # None keeps the optimizer call unbounded.
    optimization_timeout_seconds: float | None = 600.0

    animation_time_scale: float = 1.0
    animation_ticks_per_stage: int = 20

    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
        "http://127.0.0.1:8080",
    ]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("optimization_timeout_seconds", mode="before")
    @classmethod
    def disable_empty_timeout(cls, value):
        if isinstance(value, str) and value.strip().lower() in {"", "none", "0"}:
            return None
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
