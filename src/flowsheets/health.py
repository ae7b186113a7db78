from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from enum import Enum
import logging
import threading
from typing import Callable, Optional

from .errors import AvailabilityLost

log = logging.getLogger(__name__)


class AvailabilityState(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    RECOVERING = "recovering"


class Availability:
    """available -> unavailable -> recovering -> available; remote actions need `available`."""

    def __init__(self) -> None:
        self.state = AvailabilityState.AVAILABLE
        self.reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.state is AvailabilityState.AVAILABLE

    def report_failure(self, reason: str) -> bool:
        """Returns True when this failure takes the backend out of service."""
        changed = self.state is not AvailabilityState.UNAVAILABLE
        self.state = AvailabilityState.UNAVAILABLE
        self.reason = reason
        if changed:
            log.warning("backend unavailable: %s", reason)
        return changed

    def report_success(self) -> bool:
        """Returns True when a resync is due before the backend is usable again."""
        if self.state is AvailabilityState.UNAVAILABLE:
            self.state = AvailabilityState.RECOVERING
            log.info("backend reachable again, resynchronizing")
            return True
        return False

    def mark_recovered(self) -> None:
        if self.state is AvailabilityState.RECOVERING:
            self.state = AvailabilityState.AVAILABLE
            self.reason = None

    def require(self, action: str) -> None:
        if not self.available:
            raise AvailabilityLost(f"Cannot {action}: backend server is not available.")


class HealthMonitor:
    """
    Periodic health probe. `probe(timeout)` raises on failure; a probe that does not
    return within `timeout` counts as failed. Results are handed to `post` so they
    are applied on the consumer's thread, never on the timer thread.
    """

    def __init__(self, probe: Callable[[float], None], post: Callable[[Callable[[], None]], None],
                 on_result: Callable[[Optional[str]], None], *, interval: float = 5.0,
                 timeout: float = 2.0):
        self.probe = probe
        self.post = post
        self.on_result = on_result
        self.interval = interval
        self.timeout = timeout
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check_once(self) -> Optional[str]:
        """None when healthy, otherwise the failure reason."""
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="health")
        try:
            pool.submit(self.probe, self.timeout).result(timeout=self.timeout)
        except FutureTimeout:
            return f"health check timed out after {self.timeout:g}s"
        except Exception as e:
            return str(e) or e.__class__.__name__
        finally:
            pool.shutdown(wait=False)
        return None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="health-monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(self.timeout + 1)
            self._thread = None

    def _loop(self) -> None:
        while True:
            result = self.check_once()
            self.post(lambda result=result: self.on_result(result))
            if self._stop.wait(self.interval):
                return
