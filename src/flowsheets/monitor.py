from __future__ import annotations
import logging
import threading
import time
from typing import Callable, List, Optional

from .channel import Subscription
from .errors import ChannelFailure
from .events import LEGACY_FLOOR, DisplayLine, Reassembler

log = logging.getLogger(__name__)


class RunMonitor:
    """
    Follows one compile/execute run of one sheet.

    Owns the run's subscription and a fresh reassembler, so every run is
    its own ordering domain. Polling stops, and the subscription is released, on
    terminal progress, channel failure or cancellation.
    """

    def __init__(self, sheet_id: str, run_number: int, subscription: Subscription, *,
                 poll_interval: float = 1.0, legacy_floor: Optional[int] = None,
                 on_finish: Optional[Callable[["RunMonitor"], None]] = None):
        self.sheet_id = sheet_id
        self.run_number = run_number
        self.subscription = subscription
        self.poll_interval = poll_interval
        self.reassembler = Reassembler(legacy_floor=LEGACY_FLOOR if legacy_floor is None else legacy_floor)
        self.failure: Optional[str] = None
        self.cancelled = False
        self._on_finish = on_finish
        self._stop = threading.Event()

    @property
    def completed(self) -> bool:
        return self.reassembler.completed

    @property
    def active(self) -> bool:
        return not (self.completed or self.cancelled or self.failure is not None)

    @property
    def lines(self) -> List[DisplayLine]:
        return list(self.reassembler.output)

    def poll(self) -> List[DisplayLine]:
        """Hand queued payloads to the reassembler; returns newly released lines."""
        if not self.active:
            return []
        released: List[DisplayLine] = []
        for raw in self.subscription.drain():
            released.extend(self.reassembler.accept_raw(raw))
        released.extend(self.reassembler.flush_legacy())
        try:
            self.subscription.raise_for_failure()
        except ChannelFailure as exc:
            self.failure = str(exc)
            log.warning("run %s#%d channel failure: %s", self.sheet_id, self.run_number, exc)
            self._finish()
            return released
        if self.completed:
            log.info("run %s#%d finished", self.sheet_id, self.run_number)
            self._finish()
        return released

    def wait(self, timeout: Optional[float] = None,
             on_lines: Optional[Callable[[List[DisplayLine]], None]] = None) -> bool:
        """Poll at a fixed interval until the run ends; False on timeout or cancellation."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            lines = self.poll()
            if lines and on_lines is not None:
                on_lines(lines)
            if not self.active:
                return self.completed
            delay = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                delay = min(delay, remaining)
            if self._stop.wait(delay):
                return False

    def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        self._stop.set()
        self._finish()

    def _finish(self) -> None:
        self.subscription.unsubscribe()
        if self._on_finish is not None:
            callback, self._on_finish = self._on_finish, None
            callback(self)
