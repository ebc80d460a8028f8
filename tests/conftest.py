"""
Shared pytest fixtures for the LiveTrack feed tests.

Provides fixtures for:
- Settings pointing at a temporary output folder
- Session cells with and without credentials
- Sample provider responses
- Provider clients backed by httpx.MockTransport
"""
import copy
import time
from typing import Any, Callable, Dict, List

import httpx
import pytest
import pytest_asyncio

from livetrack_obs.config import (
    LiveTrackSettings,
    MailSettings,
    OutputSettings,
    PollingSettings,
)
from livetrack_obs.output.file_writer import FileWriter
from livetrack_obs.polling.client import LiveTrackClient
from livetrack_obs.session.credentials import SessionCell, SessionCredentials


SESSION_ID = "4b8a3f2e-1c9d-4e5f-a6b7-c8d9e0f1a2b3"
SESSION_TOKEN = "A1B2C3D4E5F6"
FIXED_NOW = 1_700_000_000.123


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def utc_timezone(monkeypatch):
    """Pin the host timezone so local date formatting is deterministic."""
    monkeypatch.setenv("TZ", "UTC")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def output_folder(tmp_path):
    return tmp_path / "stats"


@pytest.fixture
def settings(output_folder) -> LiveTrackSettings:
    """Settings with a temporary output folder and a short poll period."""
    return LiveTrackSettings(
        mail=MailSettings(username="", password=""),
        polling=PollingSettings(refresh_time_in_milliseconds=20),
        output=OutputSettings(output_folder=output_folder),
    )


# ============================================================================
# Session Fixtures
# ============================================================================

@pytest.fixture
def empty_session() -> SessionCell:
    return SessionCell()


@pytest.fixture
def active_session() -> SessionCell:
    return SessionCell(SessionCredentials(id=SESSION_ID, token=SESSION_TOKEN))


# ============================================================================
# Test Data Fixtures
# ============================================================================

@pytest.fixture
def sample_trackpoint() -> Dict[str, Any]:
    """A trackpoint with a GPS fix and fitness data."""
    return {
        "position": {"lat": 51.5007, "lon": -0.1246},
        "altitude": 100,
        "speed": 10,
        "dateTime": "2024-03-09T14:05:30.000Z",
        "fitnessPointData": {
            "distanceMeters": 16093.44,
            "durationSecs": 3725,
            "speedMetersPerSec": 2.5,
        },
    }


@pytest.fixture
def sample_response(sample_trackpoint) -> Dict[str, Any]:
    """A provider response with two trackpoints."""
    earlier = copy.deepcopy(sample_trackpoint)
    earlier["speed"] = 8
    return {
        "trackPoints": [earlier, sample_trackpoint],
        "sessionId": SESSION_ID,
    }


# ============================================================================
# HTTP Fixtures
# ============================================================================

@pytest.fixture
def recorded_requests() -> List[httpx.Request]:
    return []


@pytest.fixture
def make_client(settings, recorded_requests) -> Callable[..., LiveTrackClient]:
    """
    Factory for clients answering every request with a fixed response.

    Usage:
        client = make_client(200, json={"trackPoints": []})
    """
    def _make(status_code: int = 200, **response_kwargs) -> LiveTrackClient:
        def handler(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(request)
            return httpx.Response(status_code, **response_kwargs)

        client = LiveTrackClient(
            settings,
            transport=httpx.MockTransport(handler),
            clock=lambda: FIXED_NOW,
        )
        return client

    return _make


@pytest_asyncio.fixture
async def provider_client(make_client):
    """Yield the client factory and close every client it created."""
    created = []

    def _make(*args, **kwargs):
        client = make_client(*args, **kwargs)
        created.append(client)
        return client

    yield _make

    for client in created:
        await client.disconnect()


@pytest.fixture
def writer(settings) -> FileWriter:
    return FileWriter(settings)
