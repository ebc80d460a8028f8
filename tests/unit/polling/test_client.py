"""
Unit tests for LiveTrackClient.
"""
import httpx
import pytest

from conftest import FIXED_NOW, SESSION_ID
from livetrack_obs.exceptions import MalformedResponseError, UpstreamRejectedError
from livetrack_obs.polling.client import LiveTrackClient


class TestBuildUrl:
    """Test URL construction."""

    def test_includes_session_and_request_time(self, settings):
        client = LiveTrackClient(settings, clock=lambda: FIXED_NOW)

        url = client.build_url(SESSION_ID)

        assert url == (
            f"https://livetrack.garmin.com/services/session/{SESSION_ID}"
            f"/trackpoints?requestTime={int(FIXED_NOW * 1000)}"
        )

    def test_request_time_changes(self, settings):
        times = iter([1.0, 2.0])
        client = LiveTrackClient(settings, clock=lambda: next(times))

        assert client.build_url("a") != client.build_url("a")


class TestFetchTrackpoints:
    """Test fetching trackpoints."""

    @pytest.mark.asyncio
    async def test_success_returns_json(self, provider_client, recorded_requests):
        client = provider_client(200, json={"trackPoints": [{"speed": 1}]})

        data = await client.fetch_trackpoints(SESSION_ID)

        assert data == {"trackPoints": [{"speed": 1}]}
        assert len(recorded_requests) == 1
        request = recorded_requests[0]
        assert request.method == "GET"
        assert request.url.path == f"/services/session/{SESSION_ID}/trackpoints"
        assert request.url.params["requestTime"] == str(int(FIXED_NOW * 1000))

    @pytest.mark.asyncio
    async def test_non_200_raises_with_body(self, provider_client):
        client = provider_client(404, text="Session not found")

        with pytest.raises(UpstreamRejectedError) as exc_info:
            await client.fetch_trackpoints(SESSION_ID)

        assert exc_info.value.status_code == 404
        assert exc_info.value.body == "Session not found"
        assert exc_info.value.to_dict()["error"] == "UPSTREAM_REJECTED"

    @pytest.mark.asyncio
    async def test_other_success_codes_rejected(self, provider_client):
        client = provider_client(204)

        with pytest.raises(UpstreamRejectedError):
            await client.fetch_trackpoints(SESSION_ID)

    @pytest.mark.asyncio
    async def test_invalid_json(self, provider_client):
        client = provider_client(200, text="<html>maintenance</html>")

        with pytest.raises(MalformedResponseError):
            await client.fetch_trackpoints(SESSION_ID)

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, settings):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        client = LiveTrackClient(settings, transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(httpx.ConnectError):
                await client.fetch_trackpoints(SESSION_ID)
        finally:
            await client.disconnect()


class TestLifecycle:
    """Test connect and disconnect."""

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, settings):
        client = LiveTrackClient(settings)
        await client.connect()
        first = client._client
        await client.connect()

        assert client._client is first
        await client.disconnect()
        assert client._client is None
