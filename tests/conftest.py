"""Shared pytest configuration and fixtures for the scout-gps test suite."""

import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.infrastructure.mocks.serial_mocks import FakeClock, FakeSerialBus  # noqa: E402


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "hardware: mark test as requiring a physical GPS receiver"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--run-hardware",
        action="store_true",
        default=False,
        help="Run tests that require a physical GPS receiver",
    )


def pytest_collection_modifyitems(config, items):
    """Skip hardware tests unless --run-hardware is specified."""
    if config.getoption("--run-hardware"):
        return

    skip_hardware = pytest.mark.skip(reason="Need --run-hardware option to run")
    for item in items:
        if "hardware" in item.keywords:
            item.add_marker(skip_hardware)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced monotonic clock."""
    return FakeClock()


@pytest.fixture
def serial_bus() -> FakeSerialBus:
    """In-memory set of serial ports with scripted receivers."""
    return FakeSerialBus()
