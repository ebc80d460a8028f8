"""
Inbox watcher for LiveTrack session discovery.

Garmin announces a LiveTrack session by mail with a link of the form
``https://livetrack.garmin.com/session/<id>/token/<token>``. The watcher
checks the configured mailbox periodically, extracts the newest link and
publishes it into the shared :class:`SessionCell`.
"""
import asyncio
import email
import html
import imaplib
import logging
import re
import ssl
from email import policy
from email.message import EmailMessage
from typing import Callable, List, Optional, Tuple

from ..config import LiveTrackSettings, MailSettings, get_settings
from .credentials import SessionCell, SessionCredentials

logger = logging.getLogger(__name__)


SESSION_LINK_PATTERN = re.compile(
    r"https?://livetrack\.garmin\.com/session/"
    r"(?P<id>[0-9A-Za-z-]+)/token/(?P<token>[0-9A-Za-z]+)"
)

# Newest messages inspected per check
MAX_MESSAGES = 20

ImapFactory = Callable[[MailSettings], imaplib.IMAP4]


def extract_session(text: str) -> Optional[Tuple[str, str]]:
    """
    Find a LiveTrack session link in a text.

    Returns:
        Tuple of (session id, token), or None.
    """
    match = SESSION_LINK_PATTERN.search(html.unescape(text))
    if not match:
        return None
    return match.group("id"), match.group("token")


def extract_session_from_message(raw: bytes) -> Optional[Tuple[str, str]]:
    """
    Find a LiveTrack session link in a raw RFC 822 message.

    Plain text parts are preferred over HTML parts.
    """
    message = email.message_from_bytes(raw, policy=policy.default)
    if not isinstance(message, EmailMessage):
        return None

    bodies: List[str] = []
    for content_type in ("text/plain", "text/html"):
        for part in message.walk():
            if part.get_content_type() != content_type:
                continue
            try:
                bodies.append(part.get_content())
            except (LookupError, UnicodeDecodeError) as e:
                logger.debug(f"Skipping undecodable {content_type} part: {e}")

    for body in bodies:
        found = extract_session(body)
        if found:
            return found
    return None


def default_imap_factory(settings: MailSettings) -> imaplib.IMAP4:
    """Open an IMAP connection according to the mail settings."""
    if not settings.tls:
        return imaplib.IMAP4(settings.host, settings.port)

    context = ssl.create_default_context()
    if not settings.secure:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return imaplib.IMAP4_SSL(settings.host, settings.port, ssl_context=context)


class MailWatcher:
    """
    Watches a mailbox for LiveTrack notification mails.

    IMAP calls are blocking, so each check runs in a worker thread. A
    failed check is logged and retried after ``check_interval``.
    """

    def __init__(
        self,
        session: SessionCell,
        settings: Optional[LiveTrackSettings] = None,
        imap_factory: Optional[ImapFactory] = None,
    ):
        """
        Initialize the mail watcher.

        Args:
            session: Cell receiving discovered credentials.
            settings: Application settings.
            imap_factory: Opens IMAP connections, used by tests.
        """
        self.session = session
        self.settings = settings or get_settings()
        self._imap_factory = imap_factory or default_imap_factory

        self._watch_task: Optional[asyncio.Task] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start watching the mailbox."""
        mail = self.settings.mail
        if not mail.has_credentials:
            logger.warning(
                "No mail username/password configured, LiveTrack sessions "
                "will not be discovered automatically"
            )
            return

        logger.info(f"Watching {mail.username} ({mail.host}/{mail.label}) for LiveTrack mails")
        self._running = True
        self._shutdown_event.clear()
        self._watch_task = asyncio.create_task(self._watch_loop(), name="livetrack_mail")

    async def stop(self) -> None:
        """Stop watching the mailbox."""
        if not self._running:
            return

        self._running = False
        self._shutdown_event.set()
        if self._watch_task and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
        self._watch_task = None
        logger.info("Mail watcher stopped")

    async def _watch_loop(self) -> None:
        while self._running:
            try:
                await asyncio.to_thread(self.check_inbox)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error checking mailbox: {e}")

            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.settings.mail.check_interval,
                )
                break
            except asyncio.TimeoutError:
                pass

    def check_inbox(self) -> Optional[SessionCredentials]:
        """
        Check the mailbox once.

        Returns:
            Credentials from the newest matching mail, or None.

        Raises:
            imaplib.IMAP4.error: On IMAP protocol errors.
            OSError: On connection errors.
        """
        mail = self.settings.mail
        client = self._imap_factory(mail)
        try:
            client.login(mail.username, mail.password)
            status, _ = client.select(mail.label, readonly=not mail.mark_seen)
            if status != "OK":
                logger.warning(f"Could not select mailbox '{mail.label}'")
                return None

            status, data = client.search(None, "FROM", f'"{mail.sender_filter}"')
            if status != "OK" or not data or not data[0]:
                logger.debug("No LiveTrack mails found")
                return None

            message_ids = data[0].split()[-MAX_MESSAGES:]
            fetch_part = "(BODY[])" if mail.mark_seen else "(BODY.PEEK[])"

            for message_id in reversed(message_ids):
                status, parts = client.fetch(message_id, fetch_part)
                if status != "OK":
                    continue
                raw = _message_bytes(parts)
                if raw is None:
                    continue
                found = extract_session_from_message(raw)
                if found:
                    self.session.update(*found)
                    return SessionCredentials(id=found[0], token=found[1])

            logger.debug("No LiveTrack link found in recent mails")
            return None
        finally:
            try:
                client.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug(f"IMAP logout failed: {e}")


def _message_bytes(parts: list) -> Optional[bytes]:
    for part in parts or []:
        if isinstance(part, tuple) and len(part) >= 2 and isinstance(part[1], bytes):
            return part[1]
    return None
