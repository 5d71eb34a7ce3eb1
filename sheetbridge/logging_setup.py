# sheetbridge/logging_setup.py
import logging
from typing import Optional


def configure_logging(level: Optional[str] = None) -> None:
    """Plain stdout logging; uvicorn keeps its own access log handlers."""
    logging.basicConfig(
        level=(level or "INFO").upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
