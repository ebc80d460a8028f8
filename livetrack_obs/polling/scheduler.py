"""
Polling scheduler for LiveTrack trackpoints.

Runs the fetch, normalize, render and write cycle at a fixed cadence.
Every failure is scoped to its tick; the timer keeps firing.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Optional, Set

from ..config import LiveTrackSettings, get_settings
from ..exceptions import UpstreamRejectedError
from ..output.file_writer import FileWriter
from ..session.credentials import SessionCell
from ..templates.renderer import TemplateRenderer
from .client import LiveTrackClient
from .normalizer import TrackpointNormalizer

logger = logging.getLogger(__name__)


class TickOutcome(str, Enum):
    """Result of one poll cycle."""
    NOT_READY = "not_ready"
    REJECTED = "rejected"
    RENDERED = "rendered"
    FAILED = "failed"
    SKIPPED = "skipped"


class PollingScheduler:
    """
    Drives trackpoint polling.

    Features:
    - Fixed period measured from start, independent of tick duration
    - Session gate: no request until id and token are known
    - Optional single-in-flight guard against overlapping ticks
    - Tick-local error handling
    """

    def __init__(
        self,
        session: SessionCell,
        client: LiveTrackClient,
        writer: FileWriter,
        settings: Optional[LiveTrackSettings] = None,
        normalizer: Optional[TrackpointNormalizer] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        """
        Initialize the polling scheduler.

        Args:
            session: Shared session credentials, read on every tick.
            client: Provider HTTP client.
            writer: Output file writer.
            settings: Application settings.
            normalizer: Trackpoint normalizer.
            renderer: Template renderer.
        """
        self.session = session
        self.client = client
        self.writer = writer
        self.settings = settings or get_settings()
        self.normalizer = normalizer or TrackpointNormalizer()
        self.renderer = renderer or TemplateRenderer()

        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()
        self._stats: Dict[str, int] = {outcome.value: 0 for outcome in TickOutcome}

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            return

        logger.info(
            f"Starting polling scheduler "
            f"(interval={self.settings.polling.refresh_time_in_milliseconds}ms)"
        )
        self._running = True
        self._shutdown_event.clear()
        self._loop_task = asyncio.create_task(self._poll_loop(), name="livetrack_poll")

    async def stop(self) -> None:
        """Stop the polling loop and cancel running ticks."""
        if not self._running:
            return

        logger.info("Stopping polling scheduler")
        self._running = False
        self._shutdown_event.set()

        tasks = [self._loop_task, *self._in_flight]
        for task in tasks:
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._loop_task = None
        self._in_flight.clear()
        logger.info("Polling scheduler stopped")

    async def _poll_loop(self) -> None:
        """Fire a tick every interval until shutdown."""
        loop = asyncio.get_running_loop()
        interval = self.settings.polling.interval
        next_tick = loop.time() + interval

        while self._running:
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=max(0.0, next_tick - loop.time()),
                )
                # Shutdown event was set
                break
            except asyncio.TimeoutError:
                pass

            self._dispatch_tick()

            next_tick += interval
            now = loop.time()
            if next_tick <= now:
                # Event loop was blocked for more than a period; realign
                missed = int((now - next_tick) // interval) + 1
                logger.debug(f"Poll loop fell behind, skipping {missed} tick(s)")
                next_tick += missed * interval

        logger.debug("Poll loop ended")

    def _dispatch_tick(self) -> None:
        if self.settings.polling.skip_overlapping_ticks and self._in_flight:
            logger.debug("Previous tick still running, skipping this one")
            self._stats[TickOutcome.SKIPPED.value] += 1
            return

        task = asyncio.create_task(self._run_tick())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run_tick(self) -> None:
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in poll tick: {e}", exc_info=True)

    async def tick(self) -> TickOutcome:
        """
        Run one poll cycle.

        Returns:
            Outcome of the cycle.
        """
        outcome = await self._tick()
        self._stats[outcome.value] += 1
        return outcome

    async def _tick(self) -> TickOutcome:
        credentials = self.session.snapshot()
        if not credentials.is_complete:
            logger.warning(
                "No LiveTrack session id/token available yet, will try again in "
                f"{self.settings.polling.interval:g} seconds"
            )
            return TickOutcome.NOT_READY

        try:
            response = await self.client.fetch_trackpoints(credentials.id)
        except UpstreamRejectedError as e:
            logger.warning(
                f"Invalid response received (HTTP {e.status_code}) - the previous "
                "link may have expired and the new one hasn't been delivered yet?"
            )
            logger.warning(f"response: {e.body}")
            return TickOutcome.REJECTED
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch trackpoints: {e}")
            return TickOutcome.FAILED

        try:
            self._process(response)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to process trackpoints: {e}", exc_info=True)
            return TickOutcome.FAILED

        return TickOutcome.RENDERED

    def _process(self, response: Dict[str, Any]) -> None:
        output = self.settings.output
        latest, trackpoints = self.normalizer.normalize(response)

        # Full payload for advanced users
        self.writer.write_json(output.raw_filename, response)

        rendered = self.renderer.render(output.output_templates, latest)
        self.writer.write_rendered(rendered)

        logger.debug(
            f"Rendered {len(trackpoints)} trackpoint(s), "
            f"latest={'present' if latest else 'absent'}"
        )

    def get_polling_stats(self) -> Dict[str, Any]:
        """
        Get polling statistics.

        Returns:
            Dictionary of polling stats.
        """
        return {
            "running": self._running,
            "in_flight": len(self._in_flight),
            "ticks": dict(self._stats),
        }

    @property
    def is_running(self) -> bool:
        return self._running
