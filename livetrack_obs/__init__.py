"""
LiveTrack text feed.

Polls a Garmin LiveTrack session and renders the latest trackpoint into
text files for streaming overlays.
"""
from .config import LiveTrackSettings, get_settings, load_settings
from .main import LiveTrackService

__all__ = [
    "LiveTrackSettings",
    "get_settings",
    "load_settings",
    "LiveTrackService",
]
