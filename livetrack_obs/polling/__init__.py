"""
Trackpoint polling module.

Handles scheduled fetching, normalization and rendering of LiveTrack data.
"""
from .client import LiveTrackClient
from .normalizer import TrackpointNormalizer, normalize_response
from .scheduler import PollingScheduler, TickOutcome

__all__ = [
    "LiveTrackClient",
    "TrackpointNormalizer",
    "normalize_response",
    "PollingScheduler",
    "TickOutcome",
]
