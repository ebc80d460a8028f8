"""
Session credentials shared between the inbox watcher and the poller.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionCredentials:
    """Identifier and token of a live-tracking session."""
    id: Optional[str] = None
    token: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """True when both the id and the token are known."""
        return bool(self.id) and bool(self.token)


class SessionCell:
    """
    Holds the current session credentials.

    The id/token pair is replaced as a whole under a lock, so readers
    always see a consistent snapshot even when the writer runs in a
    worker thread.
    """

    def __init__(self, credentials: Optional[SessionCredentials] = None):
        self._lock = threading.Lock()
        self._credentials = credentials or SessionCredentials()
        self._updated_at: Optional[datetime] = None

    def snapshot(self) -> SessionCredentials:
        """Get the current credentials."""
        with self._lock:
            return self._credentials

    def update(self, session_id: Optional[str], token: Optional[str]) -> bool:
        """
        Replace the credentials.

        Args:
            session_id: New session id.
            token: New session token.

        Returns:
            True if the credentials changed.
        """
        new = SessionCredentials(id=session_id, token=token)
        with self._lock:
            old = self._credentials
            if old == new:
                return False
            self._credentials = new
            self._updated_at = datetime.now(timezone.utc)

        if old.id != new.id:
            logger.info(f"LiveTrack session changed to {new.id}")
        else:
            logger.debug(f"LiveTrack token refreshed for session {new.id}")
        return True

    @property
    def updated_at(self) -> Optional[datetime]:
        with self._lock:
            return self._updated_at
