"""Test configuration and fixtures."""

from typing import Any, Dict, Generator, List

import pytest
from loguru import logger


@pytest.fixture
def log_records() -> Generator[List[Dict[str, Any]], None, None]:
    """Collect the loguru records emitted during a test."""
    records: List[Dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)
