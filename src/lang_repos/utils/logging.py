from __future__ import annotations
import logging
import logging.config
from pathlib import Path
import yaml

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(config_path: str = "configs/logging.yaml", level: int = logging.INFO) -> None:
    """Setup logging configuration from YAML file."""
    path = Path(config_path)
    if not path.exists():
        # Safe fallback
        logging.basicConfig(level=level, format=DEFAULT_FORMAT)
        return

    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    logging.config.dictConfig(cfg)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def log_error(log: logging.Logger, err: BaseException) -> None:
    """Log an error followed by the chain of exceptions that caused it."""
    log.error("%s", err)
    cause = err.__cause__ or err.__context__
    while cause is not None:
        log.error("  caused by: %s: %s", type(cause).__name__, cause)
        cause = cause.__cause__ or cause.__context__
