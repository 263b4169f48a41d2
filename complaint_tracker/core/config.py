from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from complaint_tracker.core.enums import AssignmentPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    app_name: str = "Municipal Complaint Tracker"
    env: str = "dev"
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_format: str = Field("json", alias="LOG_FORMAT", pattern="^(json|text)$")
    # comma separated
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173", alias="CORS_ORIGINS"
    )

    store_backend: str = Field("mongo", alias="STORE_BACKEND", pattern="^(mongo|memory)$")
    mongo_uri: str = Field("mongodb://localhost:27017", alias="MONGO_URI")
    mongo_db: str = Field("complaints", alias="MONGO_DB")
    mongo_timeout_ms: int = Field(5000, alias="MONGO_TIMEOUT_MS", gt=0)

    id_prefix: str = Field("CMPT", alias="ID_PREFIX")
    id_floor: int = Field(130, alias="ID_FLOOR", ge=0)
    id_max_attempts: int = Field(5, alias="ID_MAX_ATTEMPTS", ge=1)
    id_retry_base_delay: float = Field(0.1, alias="ID_RETRY_BASE_DELAY", ge=0)

    max_write_attempts: int = Field(3, alias="MAX_WRITE_ATTEMPTS", ge=1)

    description_min_length: int = Field(10, alias="DESCRIPTION_MIN_LENGTH", ge=1)
    description_max_length: int = Field(2000, alias="DESCRIPTION_MAX_LENGTH", ge=1)

    list_default_limit: int = Field(100, alias="LIST_DEFAULT_LIMIT", ge=1)
    list_max_limit: int = Field(500, alias="LIST_MAX_LIMIT", ge=1)
    recent_window_days: int = Field(7, alias="RECENT_WINDOW_DAYS", ge=0)

    assignment_policy: AssignmentPolicy = Field(
        AssignmentPolicy.in_progress, alias="ASSIGNMENT_POLICY"
    )
    strict_time_spent: bool = Field(False, alias="STRICT_TIME_SPENT")

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
