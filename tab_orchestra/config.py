# tab_orchestra/config.py
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Relay
    host: str = "0.0.0.0"
    port: int = 8080
    history_limit: int = 100

    # Liveness (seconds)
    liveness_timeout: float = 300.0       # silent connection is presumed dead
    group_grace_period: float = 3600.0    # empty group history is kept this long
    sweep_interval: float = 60.0

    # Client
    relay_url: str = "ws://localhost:8080"
    heartbeat_interval: float = 25.0
    reconnect_backoff: float = 3.0
    reconnect_cooldown: float = 5.0
    echo_window_ms: int = 1000
    store_path: str = "storage/client_state.json"
    share_clusters: bool = False

    # Classification service
    gemini_api_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("TAB_ORCHESTRA_GEMINI_API_KEY", "GEMINI_API_KEY")
    )
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    classify_timeout: float = 30.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TAB_ORCHESTRA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @model_validator(mode="after")
    def _check_timing_order(self) -> "Settings":
        if not self.heartbeat_interval < self.liveness_timeout < self.group_grace_period:
            raise ValueError(
                "expected heartbeat_interval < liveness_timeout < group_grace_period, got "
                f"{self.heartbeat_interval} / {self.liveness_timeout} / {self.group_grace_period}"
            )
        if self.history_limit < 1:
            raise ValueError("history_limit must be positive")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
