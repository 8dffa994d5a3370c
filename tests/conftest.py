"""
pytest configuration for CPen link tests.

This file is automatically loaded by pytest before test collection begins.
It sets up the Python path to allow imports from src/ and provides the
shared fixtures (configuration, fake clock, simulated pen and radio).
"""

import sys
import os

# Calculate paths relative to this file's location
tests_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(tests_dir)
src_dir = os.path.join(project_root, 'src')

# Add src/ and tests/ to path so tests run without an editable install
for path in (src_dir, tests_dir):
    if path not in sys.path:
        sys.path.insert(0, path)

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer
from unittest.mock import AsyncMock

from cpenlink.auth import AuthInfo
from cpenlink.config import CPenConfig
from cpenlink.device_manager import CPenDeviceManager
from cpenlink.link_adapter import BLELinkAdapter
from cpenlink.radio import RadioCapability, RadioState
from cpenlink.session import BLESession
from cpenlink.transfer.client import StorageClient

from fake_storage import FakeStorage
from mock_ble_driver import FakePen, make_scanner_factory


# ============================================================================
# Configuration and time
# ============================================================================

@pytest.fixture
def config(tmp_path):
    """Configuration with all waits shortened and no environment overrides."""
    return CPenConfig({
        "scan_duration": 0,
        "resolve_duration": 0,
        "settle_delay": 0,
        "connect_timeout": 2,
        "chunk_retry_delay": 0,
        "download_dir": str(tmp_path / "downloads"),
    }, environ={})


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(autouse=True)
def fast_timing(monkeypatch):
    """Shrink fixed protocol delays so tests do not sleep for real."""
    monkeypatch.setattr(BLESession, "LIVENESS_RECHECK_DELAY", 0)
    monkeypatch.setattr(CPenDeviceManager, "RETRY_DELAY", 0)
    monkeypatch.setattr(CPenDeviceManager, "SET_TIME_PAUSE", 0)
    monkeypatch.setattr(CPenDeviceManager, "SET_TIME_ECHO_TIMEOUT", 0.05)


# ============================================================================
# Mock BLE Components
# ============================================================================

@pytest.fixture
def fake_pen():
    """A simulated CPen answering getTotp/getId over notifications."""
    return FakePen()


@pytest.fixture
def scanner_factory(fake_pen):
    """Scanner that sees the pen and one unrelated device."""
    return make_scanner_factory([
        ("11:22:33:44:55:66", "Headset", -70),
        fake_pen.advertisement(),
    ])


@pytest.fixture
def radio_on():
    """Radio capability that always reports the radio as on."""
    radio = AsyncMock(spec=RadioCapability)
    radio.enable.return_value = RadioState.ON
    return radio


@pytest.fixture
def device_manager(config, fake_pen, scanner_factory, radio_on, clock):
    """Device manager wired to the simulated pen."""
    adapter = BLELinkAdapter(scanner_factory=scanner_factory)
    session = BLESession(adapter, client_factory=fake_pen.client_factory, connect_timeout=2)
    return CPenDeviceManager(config, adapter=adapter, session=session, radio=radio_on,
                             fallback_radio=None, clock=clock, wall_clock=lambda: 1700000000)


# ============================================================================
# Storage service
# ============================================================================

@pytest_asyncio.fixture
async def storage():
    """FakeStorage served over real HTTP on a local port."""
    fake = FakeStorage()
    server = TestServer(fake.app())
    await server.start_server()
    fake.port = server.port
    fake.endpoint = f"http://{server.host}:{server.port}"
    yield fake
    await server.close()


@pytest.fixture
def auth():
    return AuthInfo(device_id="CPEN-0001-ID", totp="123456")


@pytest.fixture
def storage_client(storage, auth):
    """Factory for StorageClient objects pointed at the fake storage service."""
    async def provider():
        return auth

    def factory():
        return StorageClient(storage.endpoint, provider, timeout=5)
    return factory
