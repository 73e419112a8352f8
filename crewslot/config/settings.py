from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class SchedulingConfig:
    """Scheduling constants threaded explicitly through engine calls."""

    timezone: str = "America/Los_Angeles"
    buffer_minutes: int = 15
    step_minutes: int = 30
    horizon_days: int = 14
    lead_time_minutes: int = 90
    default_hour: int = 9
    alternative_count: int = 2
    earth_radius_miles: float = 3958.8


class Settings(BaseSettings):
    app_name: str = "CrewSlot"
    debug: bool = True
    database_url: str = "sqlite:///./crewslot.db"
    redis_url: str = "redis://localhost:6379/0"
    default_timezone: str = "America/Los_Angeles"
    buffer_minutes: int = 15
    slot_step_minutes: int = 30
    search_horizon_days: int = 14
    min_lead_time_minutes: int = 90
    default_hour: int = 9
    alternative_slot_count: int = 2
    earth_radius_miles: float = 3958.8
    escalation_ttl_seconds: int = 7 * 24 * 3600

    model_config = SettingsConfigDict(env_file=".env")

    def scheduling_config(self) -> SchedulingConfig:
        return SchedulingConfig(
            timezone=self.default_timezone,
            buffer_minutes=self.buffer_minutes,
            step_minutes=self.slot_step_minutes,
            horizon_days=self.search_horizon_days,
            lead_time_minutes=self.min_lead_time_minutes,
            default_hour=self.default_hour,
            alternative_count=self.alternative_slot_count,
            earth_radius_miles=self.earth_radius_miles,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
