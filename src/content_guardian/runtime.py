"""Graceful stop handling shared by long-running loops."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class StopFlag:
    """Cooperative stop request set by signals or by the owner of the loop."""

    def __init__(self) -> None:
        self.requested = False
        self.signal_name: str | None = None

    def request(self, *, signal_name: str | None = None) -> None:
        if not self.requested:
            logger.info("Stop requested%s", f" by {signal_name}" if signal_name else "")
        self.requested = True
        self.signal_name = signal_name

    def sleep(self, seconds: float) -> None:
        """Sleep up to `seconds`, waking early once stop is requested."""

        deadline = time.monotonic() + seconds
        while not self.requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def signal_handlers(self) -> Iterator[None]:
        """Route SIGINT/SIGTERM to `request` while the block runs."""

        if not hasattr(signal, "SIGINT"):
            yield
            return

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request(signal_name=name)

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)
        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
