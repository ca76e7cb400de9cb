"""
GracefulShutdown - cooperative cancellation of an orchestration run.

Cancellation is only honoured between iterations: a tool call that is
already in flight always completes and its result is recorded.

- First SIGINT (Ctrl+C): warn and set the flag, the current iteration finishes
- Second SIGINT: immediate exit with code 130
- SIGTERM: same as the first SIGINT (CI/Docker environments)
- request_stop(): same flag, set programmatically (e.g. abandoned request)
"""

import signal
import sys
import threading

import structlog

logger = structlog.get_logger()

EXIT_INTERRUPTED = 130  # POSIX: 128 + SIGINT(2)


class GracefulShutdown:
    """Stop flag consulted by the ChatLoop before every iteration.

    Attributes:
        should_stop: True once a stop was requested.

    Usage:
        shutdown = GracefulShutdown()
        loop = ChatLoop(provider, bridge, config, shutdown=shutdown)
        result = loop.run(prompt)
    """

    def __init__(self, install_signals: bool = True) -> None:
        """Create the flag and optionally install the signal handlers.

        Args:
            install_signals: Install SIGINT/SIGTERM handlers. Only possible
                from the main thread; pass False elsewhere.
        """
        self._stop = threading.Event()
        self._installed = False

        if install_signals:
            signal.signal(signal.SIGINT, self._handler)
            signal.signal(signal.SIGTERM, self._handler)
            self._installed = True
            logger.debug("graceful_shutdown.installed")

    def _handler(self, signum: int, frame) -> None:
        """Shared SIGINT/SIGTERM handler."""
        signal_name = "SIGINT" if signum == signal.SIGINT else "SIGTERM"

        if self._stop.is_set():
            logger.warning("graceful_shutdown.forced", signal=signal_name)
            sys.exit(EXIT_INTERRUPTED)

        self.request_stop(reason=signal_name)
        sys.stderr.write(
            f"\n{signal_name} received. Stopping after the current iteration...\n"
            "   (Ctrl+C again to exit immediately)\n"
        )
        sys.stderr.flush()

    def request_stop(self, reason: str = "requested") -> None:
        """Ask the loop to stop at the next iteration boundary."""
        self._stop.set()
        logger.warning("graceful_shutdown.requested", reason=reason)

    @property
    def should_stop(self) -> bool:
        """True if a stop was requested."""
        return self._stop.is_set()

    def reset(self) -> None:
        """Clear the flag (useful for testing)."""
        self._stop.clear()

    def restore_defaults(self) -> None:
        """Restore the default signal handlers."""
        if not self._installed:
            return
        signal.signal(signal.SIGINT, signal.SIG_DFL)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        self._installed = False
        logger.debug("graceful_shutdown.restored_defaults")
