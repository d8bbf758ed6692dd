"""Cooperative cancellation for long-running migrations."""

import logging
from typing import Optional

from ..errors import MigrationStopped

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Stop flag passed explicitly into the executor and transfer flows.

    Setting the flag does not interrupt an in-flight request; the next
    check raises MigrationStopped.
    """

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "Force stop requested") -> None:
        """Request cancellation. Idempotent."""
        if not self._cancelled:
            logger.info(reason)
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        """Raise MigrationStopped if cancellation was requested."""
        if self._cancelled:
            raise MigrationStopped()
