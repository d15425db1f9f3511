import logging
import sys

from tylo_lens.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """
    Configure structured logging for applications embedding tylo-lens.

    The SDK itself only ever logs through module loggers; this helper is
    for the ingestion service, the CLI and example scripts.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level or settings.log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z"
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Silence noise
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
