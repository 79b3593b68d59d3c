"""Settings and logging configuration."""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from rich.logging import RichHandler

ENV_PREFIX = "LFC_"

# Load .env from the working directory (project root when run from a checkout)
load_dotenv(Path.cwd() / ".env")


class Settings(BaseModel):
    """Runtime settings, overridable through LFC_* environment variables."""

    log_level: str = Field(default="WARNING", description="Logging level")
    strict_fit: bool = Field(default=False, description="Default for the strict-fit toggle")
    use_vectorized_backend: bool = Field(default=False, description="Use numpy for sweeps")
    max_fit_attempts: int = Field(default=10, ge=1, description="Bound on downgrade attempts")
    data_dir: Optional[str] = Field(default=None, description="Directory with hardware.json / presets.json")


def _env_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def settings_from_env() -> Settings:
    """Build settings from the environment, ignoring unset variables."""
    values: dict[str, object] = {}
    for name in Settings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is None:
            continue
        values[name] = _env_bool(raw) if name in {"strict_fit", "use_vectorized_backend"} else raw
    return Settings(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings (read once)."""
    return settings_from_env()


def configure_logging(level: Optional[str] = None) -> None:
    """Route the ``lfc`` loggers through rich at *level* (settings default)."""
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level_name,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )
