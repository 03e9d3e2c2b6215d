"""
Shared fixtures for SlowDrip tests
"""

import pytest

from slowdrip.logging import get_logger
from slowdrip.receipts import SessionSigner


@pytest.fixture
def signer():
    s = SessionSigner.create("test-session")
    yield s
    s.close()


@pytest.fixture
def capture_logs(caplog):
    """Route slowdrip logs through caplog at DEBUG"""
    get_logger().configure(level="DEBUG", format="json", propagate=True)
    caplog.set_level("DEBUG", logger="slowdrip")
    yield caplog
    get_logger().configure(level="INFO", format="console")
