"""Engine configuration loaded from environment variables."""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment."""

    # Sample filter
    accuracy_threshold_m: float = 20.0
    min_displacement_km: float = 0.005

    # Speed estimator window (number of fixes)
    speed_window_size: int = 5

    # Session machine
    inbox_size: int = 256
    tick_interval_s: float = 1.0

    # Session persistence
    session_api_url: str = "http://localhost:5000"
    session_api_token: Optional[str] = None
    session_api_timeout_s: float = 5.0
    session_cache_path: str = "pending_sessions.jsonl"

    # Solace event mesh (Geo Sample Source)
    solace_broker_url: str = "ws://localhost:8008"
    solace_broker_vpn: str = "default"
    solace_broker_username: str = "default"
    solace_broker_password: str = "default"
    topic_prefix: str = "movement/events"
    receiver_grace_period_ms: int = 2000

    @property
    def fix_topic_pattern(self) -> str:
        return f"{self.topic_prefix}/location/*/update"

    class Config:
        env_prefix = "MOVEMENT_"


@lru_cache
def get_settings() -> Settings:
    return Settings()
