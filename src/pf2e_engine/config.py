"""
Engine configuration loaded from the environment.

Settings are read from a ``.env`` file (if present) and then from the
process environment:

- ``PF2E_ENGINE_CONTENT_PATH``: content file or directory to load
- ``PF2E_ENGINE_LOG_LEVEL``: logging level name (default ``INFO``)
- ``PF2E_ENGINE_MAX_LEVEL``: highest character level accepted (default 20)
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .logutils import logger


class EngineSettings(BaseModel):
    """Runtime settings for the engine and its boundary operations."""

    content_path: Path | None = Field(
        default=None,
        description="JSON/YAML content file or directory of content files"
    )
    log_level: str = Field(default="INFO", description="Logging level name")
    max_level: int = Field(default=20, ge=1, le=20, description="Highest character level")


def load_settings(env_file: str | Path | None = None) -> EngineSettings:
    """Build settings from ``.env`` and the environment.

    Raises:
        ValidationError: If a variable holds an invalid value.
    """
    if not load_dotenv(env_file):
        logger.debug("No .env file found, using process environment only")

    content_path = os.getenv("PF2E_ENGINE_CONTENT_PATH")
    # raw strings, converted and checked by pydantic
    return EngineSettings.model_validate({
        "content_path": Path(content_path).resolve() if content_path else None,
        "log_level": os.getenv("PF2E_ENGINE_LOG_LEVEL", "INFO"),
        "max_level": os.getenv("PF2E_ENGINE_MAX_LEVEL", "20"),
    })


def load_default_repository(settings: EngineSettings | None = None):
    """Load the content repository configured by ``PF2E_ENGINE_CONTENT_PATH``."""
    from .content.loader import ContentLoadError, load_repository

    settings = settings or load_settings()
    if settings.content_path is None:
        raise ContentLoadError("PF2E_ENGINE_CONTENT_PATH is not set")
    return load_repository(settings.content_path)
