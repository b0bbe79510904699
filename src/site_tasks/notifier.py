"""User-visible, non-blocking alerts."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Sink for transient user-facing alerts."""

    def alert(self, title: str, message: str) -> None:
        """Show a transient alert."""
        ...


class LogNotifier:
    """Notifier that only writes alerts to the log."""

    def alert(self, title: str, message: str) -> None:
        """Log the alert as a warning."""
        logger.warning(f"[Alert] {title}: {message}")
