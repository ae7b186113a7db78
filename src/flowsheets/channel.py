"""In-process publish/subscribe channel carrying run progress per topic."""
from __future__ import annotations
import logging
import queue
import threading
from typing import Any, Dict, List, Optional, Protocol

from .errors import ChannelFailure

log = logging.getLogger(__name__)


def compiler_topic(sheet_id: str) -> str:
    return f"compiler/{sheet_id}"


def runner_topic(sheet_id: str) -> str:
    return f"runner/{sheet_id}"


class _Failure:
    def __init__(self, reason: str):
        self.reason = reason


class Subscription:
    """One consumer's inbox. Producers put from any thread; the owner drains on its own."""

    def __init__(self, channel: "LocalChannel", topic: str):
        self.channel = channel
        self.topic = topic
        self.active = True
        self.failure: Optional[str] = None
        self._inbox: "queue.Queue[Any]" = queue.Queue()

    def deliver(self, payload: Any) -> None:
        if self.active:
            self._inbox.put(payload)

    def drain(self) -> List[Any]:
        items: List[Any] = []
        while True:
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                return items
            if isinstance(item, _Failure):
                self.failure = self.failure or item.reason
            else:
                items.append(item)

    def raise_for_failure(self) -> None:
        if self.failure is not None:
            raise ChannelFailure(f"{self.topic}: {self.failure}")

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self.channel._detach(self)
        self.drain()


class ProgressChannel(Protocol):
    def subscribe(self, topic: str) -> Subscription: ...

    def publish(self, topic: str, payload: Any) -> None: ...


class LocalChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: Dict[str, List[Subscription]] = {}

    def subscribe(self, topic: str) -> Subscription:
        sub = Subscription(self, topic)
        with self._lock:
            self._subs.setdefault(topic, []).append(sub)
        log.debug("subscribed to %s", topic)
        return sub

    def publish(self, topic: str, payload: Any) -> None:
        with self._lock:
            targets = list(self._subs.get(topic, ()))
        for sub in targets:
            sub.deliver(payload)

    def fail(self, topic: str, reason: str) -> None:
        with self._lock:
            targets = list(self._subs.get(topic, ()))
        for sub in targets:
            sub.deliver(_Failure(reason))

    def subscribers(self, topic: str) -> int:
        with self._lock:
            return len(self._subs.get(topic, ()))

    def _detach(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.topic, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subs.pop(sub.topic, None)
        log.debug("unsubscribed from %s", sub.topic)
