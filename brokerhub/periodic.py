"""Run an action repeatedly on a background thread until cancelled."""

from __future__ import annotations

import threading
from typing import Callable

from brokerhub.logs import log_error


class Repeater:
    """Calls an action every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, action: Callable[[], None]) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        self._interval = interval
        self._action = action
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="repeater", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._action()
            except Exception as err:
                log_error("periodic", "running a scheduled action", err)

    @property
    def active(self) -> bool:
        """Whether the repeater is still scheduling calls."""
        return not self._stopped.is_set()

    def cancel(self) -> None:
        """Stop calling the action; no call starts once this returns."""
        self._stopped.set()
        if threading.current_thread() is not self._thread:
            self._thread.join()

    def __enter__(self) -> "Repeater":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.cancel()


def repeat(interval: float, action: Callable[[], None]) -> Repeater:
    """Start calling ``action`` every ``interval`` seconds."""
    return Repeater(interval, action)