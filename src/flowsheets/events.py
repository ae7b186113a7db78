"""
Ordered reassembly of compile/run progress.

Progress arrives at-least-once and in any order, either sequenced
({"sequence", "content", "timestamp"}) or as a bare legacy string. The
reassembler releases sequenced content strictly by sequence starting at 0,
holding anything past a gap until the gap closes. Legacy content carries no
order of its own: it is queued behind every known sequence and released on
the next polling tick once no gap is outstanding.
"""
from __future__ import annotations
from dataclasses import dataclass, field
import heapq
import json
import logging
import math
import time
from typing import Any, List, Optional, Set, Tuple, Union

log = logging.getLogger(__name__)

TERMINAL_MARKERS = ("completed successfully", "failed", "error")
LEGACY_FLOOR = 9999


@dataclass(frozen=True)
class SequencedEvent:
    sequence: int
    content: str
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class LegacyEvent:
    content: str
    timestamp: Optional[float] = None


ProgressEvent = Union[SequencedEvent, LegacyEvent]


@dataclass(frozen=True)
class DisplayLine:
    sequence: int
    content: str
    legacy: bool = False


def _sequence_number(value: Any) -> Optional[int]:
    """Non-negative integral sequence, or None for anything that cannot order a message."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        value = int(value)
    if not isinstance(value, int) or value < 0:
        return None
    return value


def parse_payload(raw: Any) -> ProgressEvent:
    """Decode one channel message. A missing or negative sequence means legacy."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return LegacyEvent(raw, time.time())
        if not isinstance(decoded, dict):
            return LegacyEvent(decoded if isinstance(decoded, str) else raw, time.time())
        raw = decoded
    if isinstance(raw, dict):
        content = str(raw.get("content", ""))
        timestamp = raw.get("timestamp")
        seq = _sequence_number(raw.get("sequence"))
        if seq is None:
            return LegacyEvent(content, timestamp)
        return SequencedEvent(seq, content, timestamp)
    return LegacyEvent(str(raw), time.time())


def is_terminal(content: str) -> bool:
    lowered = content.lower()
    return any(marker in lowered for marker in TERMINAL_MARKERS)


@dataclass
class Reassembler:
    legacy_floor: int = LEGACY_FLOOR
    next_expected: int = 0
    completed: bool = False
    output: List[DisplayLine] = field(default_factory=list)
    _pending: List[Tuple[int, str]] = field(default_factory=list, init=False, repr=False)
    _pending_seqs: Set[int] = field(default_factory=set, init=False, repr=False)
    _legacy: List[Tuple[int, str]] = field(default_factory=list, init=False, repr=False)
    _highest_seen: int = field(default=-1, init=False, repr=False)
    _last_legacy: int = field(default=-1, init=False, repr=False)

    @property
    def pending(self) -> int:
        return len(self._pending) + len(self._legacy)

    @property
    def has_gap(self) -> bool:
        return bool(self._pending)

    def reset(self) -> None:
        self.next_expected = 0
        self.completed = False
        self.output = []
        self._pending = []
        self._pending_seqs = set()
        self._legacy = []
        self._highest_seen = -1
        self._last_legacy = -1

    def accept(self, event: ProgressEvent) -> List[DisplayLine]:
        """Buffer one event; returns the lines this made releasable, in order."""
        if isinstance(event, LegacyEvent):
            synthetic = self._next_legacy_sequence()
            self._legacy.append((synthetic, event.content))
            log.debug("legacy event queued at synthetic sequence %d", synthetic)
            return []

        seq = event.sequence
        if seq < self.next_expected or seq in self._pending_seqs:
            log.debug("dropping duplicate sequence %d", seq)
            return []
        self._highest_seen = max(self._highest_seen, seq)
        heapq.heappush(self._pending, (seq, event.content))
        self._pending_seqs.add(seq)

        released: List[DisplayLine] = []
        while self._pending and self._pending[0][0] == self.next_expected:
            s, content = heapq.heappop(self._pending)
            self._pending_seqs.discard(s)
            self.next_expected += 1
            released.append(self._emit(DisplayLine(s, content)))
        return released

    def accept_raw(self, raw: Any) -> List[DisplayLine]:
        return self.accept(parse_payload(raw))

    def flush_legacy(self) -> List[DisplayLine]:
        """Release queued legacy content unless sequenced content is still waiting on a gap."""
        if self._pending or not self._legacy:
            return []
        released = [self._emit(DisplayLine(s, content, legacy=True)) for s, content in self._legacy]
        self._legacy = []
        return released

    def drain(self) -> List[DisplayLine]:
        """Release everything still buffered, gaps notwithstanding."""
        released = []
        while self._pending:
            s, content = heapq.heappop(self._pending)
            self.next_expected = s + 1
            released.append(self._emit(DisplayLine(s, content)))
        self._pending_seqs.clear()
        released.extend(self.flush_legacy())
        return released

    def _next_legacy_sequence(self) -> int:
        synthetic = max(self.legacy_floor, self._highest_seen + 1, self._last_legacy + 1)
        self._last_legacy = synthetic
        return synthetic

    def _emit(self, line: DisplayLine) -> DisplayLine:
        self.output.append(line)
        if not self.completed and is_terminal(line.content):
            self.completed = True
            log.debug("terminal progress at sequence %d", line.sequence)
        return line

    def contents(self) -> List[str]:
        return [line.content for line in self.output]
