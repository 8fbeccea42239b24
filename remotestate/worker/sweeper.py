"""Background worker that removes expired locks."""

import signal
import threading
from typing import Optional

import structlog

from ..config import Settings, settings as default_settings
from ..engine import LockManager, build_lock_manager
from ..exceptions import StorageUnavailableError
from ..logging import setup_logging


logger = structlog.get_logger()


class LockSweeper:
    """
    Periodically deletes expired lock entries.

    Expired entries are already treated as absent on acquire, so the
    sweeper only keeps the backing store tidy and lock listings accurate.
    """

    def __init__(self, locks: LockManager, interval: float = 30.0):
        """
        Initialize sweeper.

        Args:
            locks: Lock manager to sweep
            interval: Seconds between sweeps
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.locks = locks
        self.interval = interval
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop.is_set()

    def run_once(self) -> int:
        """
        Run a single sweep.

        Returns:
            Number of entries removed
        """
        removed = self.locks.sweep()
        if removed:
            logger.info("Swept expired locks", removed=removed)
        return removed

    def start(self, install_signal_handlers: bool = True) -> None:
        """Run sweeps until stopped."""
        logger.info("Starting lock sweeper", interval=self.interval)

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._handle_shutdown)
            signal.signal(signal.SIGTERM, self._handle_shutdown)

        while not self._stop.is_set():
            try:
                self.run_once()
            except StorageUnavailableError as e:
                logger.error("Lock backend unavailable", error=str(e))

            self._stop.wait(self.interval)

        logger.info("Lock sweeper stopped")

    def stop(self) -> None:
        self._stop.set()

    def _handle_shutdown(self, signum: int, frame) -> None:
        """Handle shutdown signals."""
        logger.info("Received shutdown signal", signal=signum)
        self.stop()


def main(settings: Optional[Settings] = None) -> None:
    """Main entry point for the sweeper."""
    settings = settings or default_settings
    setup_logging(settings.log_level)

    sweeper = LockSweeper(build_lock_manager(settings), settings.sweep_interval_seconds)
    sweeper.start()


if __name__ == "__main__":
    main()
