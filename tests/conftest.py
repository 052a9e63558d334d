"""
Pytest configuration for the relay tests.

Upstream traffic is mocked with respx; nothing here reaches the network.
"""

import pytest
from starlette.testclient import TestClient

from hls_relay.configs import Settings
from hls_relay.main import create_app


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
