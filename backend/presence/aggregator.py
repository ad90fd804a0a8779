"""
Presence aggregation.

Folds individual probe results into a single collective signal:
present while at least one device answered its most recent probe,
not-present once none did.
"""

import logging

from presence.models import PingResult, PresenceEvent

logger = logging.getLogger(__name__)


class PresenceAggregator:
    """Tracks which devices are reachable and decides when to notify."""

    def __init__(self) -> None:
        self._present: dict[str, None] = {}
        self._report_first_result = True

    @property
    def is_present(self) -> bool:
        return len(self._present) > 0

    @property
    def present_devices(self) -> list[str]:
        return list(self._present)

    def arm(self, report_first_result: bool = True) -> None:
        """
        Set the one-shot latch consumed by the next result.

        When armed, the first result after start is reported even if the
        collective state did not change.
        """
        self._report_first_result = report_first_result

    def update(self, result: PingResult) -> PresenceEvent | None:
        """
        Apply a probe result and return the notification to emit, if any.
        """
        was_present = self.is_present

        if result.is_present:
            self._present[result.address] = None
        else:
            self._present.pop(result.address, None)

        is_present_now = self.is_present
        report_first = self._report_first_result
        self._report_first_result = False

        if is_present_now:
            if not was_present or report_first:
                logger.info(f"Presence detected via {result.address}")
                return PresenceEvent.PRESENT
        else:
            if was_present or report_first:
                logger.info(f"No devices present (last: {result.address})")
                return PresenceEvent.NOT_PRESENT

        return None
