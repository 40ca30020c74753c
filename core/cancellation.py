"""Cooperative cancellation token shared by the trainer and inference loop."""

import logging

logger = logging.getLogger(__name__)


class CancellationToken:
    """Flag checked by long-running coroutines at safe points.

    Cancelling never interrupts work in progress; the owner of the work
    decides where to look at the flag.
    """

    __slots__ = ("_cancelled", "_reason")

    def __init__(self):
        self._cancelled = False
        self._reason = None

    def cancel(self, reason: str = "cancelled"):
        if not self._cancelled:
            logger.debug("Cancellation requested: %s", reason)
        self._cancelled = True
        self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self):
        return self._reason
