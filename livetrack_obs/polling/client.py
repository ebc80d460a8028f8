"""
HTTP client for the live-tracking provider.

Fetches the trackpoints of a session from the provider's public
session endpoint.
"""
import json
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from ..config import LiveTrackSettings, get_settings
from ..exceptions import MalformedResponseError, UpstreamRejectedError

logger = logging.getLogger(__name__)


TRACKPOINTS_PATH = "/services/session/{session_id}/trackpoints"


class LiveTrackClient:
    """
    Client for the LiveTrack session API.

    Responsibilities:
    - Build the trackpoint URL with a cache-busting request time
    - Reject non-200 responses
    - Decode the JSON body
    """

    def __init__(
        self,
        settings: Optional[LiveTrackSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the client.

        Args:
            settings: Application settings.
            transport: Optional httpx transport, used by tests.
            clock: Returns the current time in seconds.
        """
        self.settings = settings or get_settings()
        self._transport = transport
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self) -> None:
        """Initialize HTTP client."""
        if self._client is not None:
            return

        polling = self.settings.polling
        kwargs: Dict[str, Any] = {
            "base_url": polling.provider_url,
            "headers": {"Accept": "application/json"},
        }
        if polling.request_timeout is not None:
            kwargs["timeout"] = polling.request_timeout
        if self._transport is not None:
            kwargs["transport"] = self._transport

        self._client = httpx.AsyncClient(**kwargs)
        logger.info(f"LiveTrack client initialized: {polling.provider_url}")

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("LiveTrack client disconnected")

    def build_url(self, session_id: str) -> str:
        """Absolute trackpoint URL for a session at the current time."""
        path = TRACKPOINTS_PATH.format(session_id=session_id)
        return (
            f"{self.settings.polling.provider_url.rstrip('/')}{path}"
            f"?requestTime={self._request_time()}"
        )

    def _request_time(self) -> int:
        return int(self._clock() * 1000)

    async def fetch_trackpoints(self, session_id: str) -> Dict[str, Any]:
        """
        Fetch the trackpoints of a session.

        Args:
            session_id: LiveTrack session id.

        Returns:
            Decoded response body.

        Raises:
            UpstreamRejectedError: If the status code is not 200.
            MalformedResponseError: If the body is not valid JSON.
            httpx.HTTPError: On transport failures.
        """
        if self._client is None:
            await self.connect()

        url = self.build_url(session_id)
        logger.info(f"Fetching {url}")

        response = await self._client.get(url)

        if response.status_code != 200:
            raise UpstreamRejectedError(response.status_code, response.text)

        try:
            return response.json()
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                "Response body is not valid JSON",
                details={"error": str(e), "body": response.text[:500]},
            ) from e
