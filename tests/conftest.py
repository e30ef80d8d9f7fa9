"""
Pytest configuration and shared fixtures for the test suite.
"""

import logging

import pytest
import pytest_asyncio

from src.testmaster.core.models import HealingConfig
from src.testmaster.data_access import HealingEventRepository
from src.testmaster.services.healing_event_store import HealingEventStore
from src.testmaster.services.locator_catalog import LocatorCatalog
from src.testmaster.services.report_generator import ReportGenerator
from tests.utils.fake_browser import FakeBrowserDriver, FakeBrowserFactory, shop_pages


@pytest.fixture
def site_pages():
    """The fake shop site, fresh per test so tests may edit pages."""
    return shop_pages()


@pytest.fixture
def browser_factory(site_pages):
    return FakeBrowserFactory(site_pages)


@pytest.fixture
def fake_driver(site_pages):
    return FakeBrowserDriver(site_pages)


@pytest_asyncio.fixture
async def event_store(tmp_path):
    """Healing event store over a throwaway sqlite file."""
    store = HealingEventStore(HealingEventRepository(str(tmp_path / "healing.db")))
    await store.initialize()
    return store


@pytest.fixture
def healing_config():
    return HealingConfig()


@pytest.fixture
def catalog():
    return LocatorCatalog()


@pytest.fixture
def report_generator(tmp_path):
    return ReportGenerator(str(tmp_path / "reports"))


@pytest.fixture(autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
