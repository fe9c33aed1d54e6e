"""
pytest configuration and fixtures for quote engine tests
"""

import shutil
import sys
import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from database.connection import DatabaseManager
from database.operations import SQLQuoteStorage, SQLActivityLog
from quotes import Actor, EventPublisher, QuoteAggregate
from utils.config_manager import NumberingConfig, QuoteConfig

from tests.mocks import InMemoryQuoteStorage, RecordingSink

PINNED_TODAY = date(2025, 3, 14)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def clock():
    """业务日期固定为 2025-03-14"""
    return lambda: PINNED_TODAY


@pytest.fixture
def numbering_config():
    return NumberingConfig(period="year", sequence_width=3, max_attempts=3, retry_backoff_ms=1)


@pytest.fixture
def quote_config(numbering_config):
    return QuoteConfig(
        numbering=numbering_config,
        default_tax_rate=Decimal("17"),
        default_validity_days=30,
        default_notes="Payment within 30 days",
        currency_symbol="₪",
        timezone="Asia/Jerusalem",
    )


@pytest.fixture
def owner():
    return Actor("owner-1")


@pytest.fixture
def other_owner():
    return Actor("owner-2")


@pytest.fixture
def admin():
    return Actor("admin-1", is_admin=True)


@pytest.fixture
def memory_storage():
    """In-memory storage enforcing the (owner_id, quote_number) constraint"""
    return InMemoryQuoteStorage()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def publisher(recording_sink):
    return EventPublisher([recording_sink])


@pytest.fixture
async def aggregate(memory_storage, publisher, clock, quote_config):
    """QuoteAggregate over the in-memory storage with a pinned clock"""
    engine = QuoteAggregate(memory_storage, publisher=publisher, clock=clock, config=quote_config)
    yield engine
    await engine.flush()


@pytest.fixture
async def test_database():
    """Create an in-memory test database"""
    connection = DatabaseManager("sqlite+aiosqlite:///:memory:", echo=False)
    await connection.create_tables()

    yield connection

    # Cleanup
    await connection.close()


@pytest.fixture
def sql_storage(test_database):
    return SQLQuoteStorage(test_database)


@pytest.fixture
def sql_activity_log(test_database):
    return SQLActivityLog(test_database)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest"""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
