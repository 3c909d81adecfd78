"""
Logging setup shared by the engine modules.
"""

import logging

logger = logging.getLogger("pf2e-engine")

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(level: str | int | None = None, settings=None) -> logging.Logger:
    """Attach a stream handler to the package logger.

    Calling this more than once only updates the level.

    Args:
        level: Logging level name or number. Defaults to
            ``settings.log_level``.
        settings: EngineSettings to read the level from. Loaded with
            ``load_settings()`` (``PF2E_ENGINE_LOG_LEVEL``) when omitted.
    """
    if level is None:
        if settings is None:
            from .config import load_settings
            settings = load_settings()
        level = settings.log_level
    if isinstance(level, str):
        level = level.upper()

    if not any(getattr(h, "_pf2e_engine", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._pf2e_engine = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger
