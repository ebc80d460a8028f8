"""
Session module.

Shares LiveTrack session credentials and discovers them from the inbox.
"""
from .credentials import SessionCell, SessionCredentials
from .mail_watcher import MailWatcher, extract_session, extract_session_from_message

__all__ = [
    "SessionCell",
    "SessionCredentials",
    "MailWatcher",
    "extract_session",
    "extract_session_from_message",
]
