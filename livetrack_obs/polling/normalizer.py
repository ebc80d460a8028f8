"""
Trackpoint normalization.

Picks the latest sample out of a provider response and fills in the
fields the provider leaves out when there is no GPS fix.
"""
import copy
import logging
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import MalformedResponseError

logger = logging.getLogger(__name__)


TRACKPOINTS_KEY = "trackPoints"
FITNESS_KEY = "fitnessPointData"


class TrackpointNormalizer:
    """
    Extracts and normalizes the latest trackpoint.

    The response itself is never modified; the latest sample is returned
    as a copy so the raw payload can be persisted as received.
    """

    def normalize(
        self,
        response: Any,
    ) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
        """
        Normalize a provider response.

        Args:
            response: Decoded JSON body of a 200 response.

        Returns:
            Tuple of (latest sample or None, full trackpoint list).

        Raises:
            MalformedResponseError: If the body is not an object or its
                trackpoints are not a list.
        """
        if not isinstance(response, dict):
            raise MalformedResponseError(
                "Expected a JSON object",
                details={"type": type(response).__name__},
            )

        trackpoints = response.get(TRACKPOINTS_KEY)
        if trackpoints is None:
            trackpoints = []
        if not isinstance(trackpoints, list):
            raise MalformedResponseError(
                f"'{TRACKPOINTS_KEY}' must be a list",
                details={"type": type(trackpoints).__name__},
            )

        if not trackpoints:
            logger.debug("Response contains no trackpoints")
            return None, trackpoints

        latest = trackpoints[-1]
        if not isinstance(latest, dict):
            raise MalformedResponseError(
                "Trackpoint must be an object",
                details={"type": type(latest).__name__},
            )

        return self._apply_defaults(copy.deepcopy(latest)), trackpoints

    def _apply_defaults(self, sample: Dict[str, Any]) -> Dict[str, Any]:
        """
        Default the fields missing when the device has no fix.

        Only ``speed`` and ``fitnessPointData.speedMetersPerSec`` are
        defaulted; the fitness sub-record is never created.
        """
        if not sample.get("speed"):
            sample["speed"] = 0

        fitness = sample.get(FITNESS_KEY)
        if isinstance(fitness, dict) and not fitness.get("speedMetersPerSec"):
            fitness["speedMetersPerSec"] = 0

        return sample


def normalize_response(
    response: Any,
) -> Tuple[Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    """Normalize with a default normalizer."""
    return TrackpointNormalizer().normalize(response)
