"""Cooperative cancellation for batch runs and fan-out publishes."""
from __future__ import annotations

import threading


class CancellationToken:
    """Thread-safe flag checked between units of work.

    Cancelling never interrupts a provider call that is already running;
    the coordinator observes the flag before starting the next one.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()
