"""
Pytest configuration for connector tests
"""

import pytest

from .fixtures import *  # noqa: F401, F403


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "golden: mark test as part of golden contract suite")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    from chargeback_connectors.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
