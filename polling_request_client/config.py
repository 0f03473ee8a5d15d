import os
import sys
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from polling_request_client.models import RequestModel


def load_request_model(path: Union[str, Path]) -> RequestModel:
    """Read a RequestModel from a JSON file; validation errors propagate as-is"""
    resolved = Path(path).expanduser().resolve()
    logger.debug(f"Loading request model from {resolved}")
    return RequestModel.model_validate_json(resolved.read_text(encoding="utf-8"))


def configure_logging(level: Optional[str] = None) -> None:
    """Replace loguru's default sink with one on stderr.

    The level comes from the argument, then the LOG_LEVEL environment
    variable, then INFO.
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger.remove()
    logger.add(sys.stderr, level=level_name)
