import logging

from .config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for processes that embed the engine."""
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
