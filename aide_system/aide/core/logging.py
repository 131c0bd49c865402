import logging

from aide.core.config import settings

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Logger under the "aide." namespace, configured once per name."""
    logger = logging.getLogger(f"aide.{name}")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
        # handled here; keep records out of the root handlers
        logger.propagate = False
    return logger


"""
Logging setup and it configures:
- Log format (timestamp, level, component)
- Log level from LOG_LEVEL
- Output destination (stderr, one handler per component logger)

The main purpose:
Standardized logging for the agent core, the collaborators and the jobs.
"""
