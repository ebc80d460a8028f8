"""
LiveTrack text feed - Main Entry Point.

Starts the service that:
1. Watches the inbox for LiveTrack session links
2. Polls the session's trackpoints on a fixed interval
3. Renders the latest trackpoint into text files for OBS
"""
import asyncio
import logging
import os
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

from .config import LiveTrackSettings, load_settings
from .exceptions import ConfigurationError, TemplateSyntaxError
from .output.file_writer import FileWriter
from .polling.client import LiveTrackClient
from .polling.scheduler import PollingScheduler
from .session.credentials import SessionCell
from .session.mail_watcher import MailWatcher
from .templates.renderer import TemplateRenderer

logger = logging.getLogger(__name__)


CONFIG_ENV = "LIVETRACK_CONFIG"


def get_version() -> str:
    try:
        return version("livetrack-obs")
    except PackageNotFoundError:
        return "0.0.0"


class LiveTrackService:
    """
    Main service orchestrator.

    Wires the session cell, inbox watcher, provider client, renderer and
    file writer together and owns their lifecycle.
    """

    def __init__(
        self,
        settings: LiveTrackSettings,
        session: Optional[SessionCell] = None,
        client: Optional[LiveTrackClient] = None,
        mail_watcher: Optional[MailWatcher] = None,
    ):
        """
        Initialize the service.

        Args:
            settings: Application settings.
            session: Shared session cell.
            client: Provider client.
            mail_watcher: Inbox watcher.
        """
        self.settings = settings
        self.session = session or SessionCell()
        self.client = client or LiveTrackClient(settings)
        self.mail_watcher = mail_watcher or MailWatcher(self.session, settings)
        self.renderer = TemplateRenderer()
        self.writer = FileWriter(settings)
        self.scheduler = PollingScheduler(
            session=self.session,
            client=self.client,
            writer=self.writer,
            settings=settings,
            renderer=self.renderer,
        )

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """
        Start the service.

        Raises:
            ConfigurationError: If an output template does not compile.
        """
        logger.info(f"Starting {self.settings.app_name} v{get_version()}")

        try:
            leaves = self.renderer.validate(self.settings.output.output_templates)
        except TemplateSyntaxError as e:
            raise ConfigurationError(
                f"Invalid output template: {e.message}", details=e.details
            ) from e
        logger.info(
            f"Rendering {len(leaves)} template(s) into {self.settings.output.output_folder}"
        )

        await self.client.connect()
        await self.mail_watcher.start()
        await self.scheduler.start()

        self._running = True

    async def stop(self) -> None:
        """Stop the service."""
        if not self._running:
            return

        logger.info("Stopping service...")
        self._running = False
        self._shutdown_event.set()

        await self.scheduler.stop()
        await self.mail_watcher.stop()
        await self.client.disconnect()

        logger.info(f"Service stopped ({self.scheduler.get_polling_stats()['ticks']})")

    async def serve_forever(self) -> None:
        """Run until shutdown."""
        await self._shutdown_event.wait()


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def setup_signal_handlers(service: LiveTrackService, loop: asyncio.AbstractEventLoop):
    """Setup signal handlers for graceful shutdown."""
    def signal_handler():
        logger.info("Received shutdown signal")
        loop.create_task(service.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: signal_handler())


def resolve_config_path(argv: Optional[list] = None) -> Optional[Path]:
    """Config file from the first CLI argument or ``LIVETRACK_CONFIG``."""
    args = sys.argv[1:] if argv is None else argv
    if args:
        return Path(args[0])
    if os.environ.get(CONFIG_ENV):
        return Path(os.environ[CONFIG_ENV])
    return None


async def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    setup_logging(os.environ.get("LIVETRACK_LOG_LEVEL", "INFO"))

    try:
        settings = load_settings(resolve_config_path(argv))
    except ConfigurationError as e:
        logger.error(f"{e.message}: {e.details}")
        return 1

    logging.getLogger().setLevel(settings.log_level.upper())

    service = LiveTrackService(settings)
    setup_signal_handlers(service, asyncio.get_running_loop())

    try:
        await service.start()
        await service.serve_forever()
    except ConfigurationError as e:
        logger.error(f"{e.message}: {e.details}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        await service.stop()

    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
