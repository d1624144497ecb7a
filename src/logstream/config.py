"""Configuration for log analysis runs."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Analysis settings with env/CLI override support."""

    batch_size: int = Field(default=100, gt=0)
    channel_capacity: int | None = Field(default=None, gt=0)
    refresh_interval: float = Field(default=5.0, gt=0)
    expensive_session_limit: int = Field(default=10, ge=0)
    cost_alert_factor: float = Field(default=1.5, gt=0)
    verbose: bool = False

    model_config = {
        "env_prefix": "LOGSTREAM_",
        "env_file": ".env",
        "extra": "ignore",
    }
