"""Slot allocation for a TDMA cycle."""

from __future__ import annotations

import enum
import sys
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable

DEFAULT_SLOT_DURATION = 1.0
DEFAULT_TOTAL_SLOTS = 10


class SlotState(str, enum.Enum):
    FREE = "FREE"
    ASSIGNED = "ASSIGNED"
    BUSY = "BUSY"


@dataclass
class SlotStatus:
    """State of one slot in the cycle."""

    slot_id: int
    duration: float
    node_id: str = ""
    state: SlotState = SlotState.FREE
    start_time: float = 0.0
    fragment_id: int = 0


class SchedulerError(Exception):
    """Raised when a slot cannot be allocated or addressed."""


def _seconds(duration: timedelta | float) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


class TDMAScheduler:
    """Hands out slots of a fixed-size cycle to nodes.

    ``clock`` returns the current time in seconds; it defaults to a monotonic clock.
    """

    def __init__(
        self,
        total_slots: int = DEFAULT_TOTAL_SLOTS,
        slot_duration: timedelta | float = DEFAULT_SLOT_DURATION,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if total_slots <= 0:
            raise ValueError("total slots must be positive")
        self.total_slots = total_slots
        self.slot_duration = _seconds(slot_duration)
        self._clock = clock or time.monotonic
        self._lock = threading.RLock()
        self._current = 0
        self._slots = [SlotStatus(i, self.slot_duration) for i in range(total_slots)]
        self._priorities: dict[str, int] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def _assign(self, slot_id: int, node_id: str) -> int:
        slot = self._slots[slot_id]
        slot.node_id = node_id
        slot.state = SlotState.ASSIGNED
        slot.start_time = self._clock()
        return slot_id

    def allocate_time_slot(self, node_id: str, priority: int = 1) -> int:
        """Give ``node_id`` a slot, preferring its live one, then the nearest free one."""
        with self._lock:
            now = self._clock()
            for slot in self._slots:
                if slot.node_id == node_id and slot.state is SlotState.ASSIGNED:
                    if now - slot.start_time < self.slot_duration * 10:
                        return slot.slot_id
                    slot.state = SlotState.FREE
                    slot.node_id = ""

            for offset in range(self.total_slots):
                slot_id = (self._current + offset) % self.total_slots
                if self._slots[slot_id].state is SlotState.FREE:
                    return self._assign(slot_id, node_id)

            oldest: SlotStatus | None = None
            oldest_time = self._clock()
            for slot in self._slots:
                if slot.state is SlotState.ASSIGNED and slot.start_time < oldest_time:
                    oldest_time = slot.start_time
                    oldest = slot
            if oldest is not None and self._clock() - oldest_time > self.slot_duration * 5:
                return self._assign(oldest.slot_id, node_id)

            raise SchedulerError("no available time slot")

    def allocate_consecutive_slots(self, node_id: str, count: int) -> list[int]:
        """Give ``node_id`` the first run of ``count`` adjacent free slots."""
        with self._lock:
            for start in range(self.total_slots - count + 1):
                run = range(start, start + max(count, 0))
                if all(self._slots[i].state is SlotState.FREE for i in run):
                    return [self._assign(i, node_id) for i in run]
            raise SchedulerError("not enough consecutive slots")

    def _check(self, slot_id: int) -> None:
        if not 0 <= slot_id < self.total_slots:
            raise SchedulerError("invalid slot id")

    def release_time_slot(self, slot_id: int) -> None:
        with self._lock:
            self._check(slot_id)
            slot = self._slots[slot_id]
            slot.state = SlotState.FREE
            slot.node_id = ""
            slot.fragment_id = 0

    def schedule(self) -> dict[int, str]:
        """Map of assigned slot numbers to the nodes holding them."""
        with self._lock:
            return {
                slot.slot_id: slot.node_id
                for slot in self._slots
                if slot.state is SlotState.ASSIGNED
            }

    def update_priority(self, node_id: str, new_priority: int) -> None:
        """Record a node's priority; allocation does not use it."""
        with self._lock:
            self._priorities[node_id] = new_priority

    def current_slot(self) -> int:
        with self._lock:
            return self._current

    def slot_status(self, slot_id: int) -> SlotStatus:
        with self._lock:
            self._check(slot_id)
            return self._slots[slot_id]

    def advance(self) -> int:
        """Move the cycle on by one slot and return the new current slot."""
        with self._lock:
            self._current = (self._current + 1) % self.total_slots
            return self._current

    def _run(self) -> None:
        while not self._stop_event.wait(self.slot_duration):
            self.advance()

    def start(self) -> None:
        """Advance the current slot once per slot duration in a background thread."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()

    def stop(self) -> None:
        with self._lock:
            thread = self._thread
            self._thread = None
        self._stop_event.set()
        if thread is not None:
            thread.join()

    def next_available_slot(self) -> int:
        with self._lock:
            for slot in self._slots:
                if slot.state is SlotState.FREE:
                    return slot.slot_id
            raise SchedulerError("no available time slot")

    def status_report(self) -> str:
        with self._lock:
            lines = [
                "=== TDMA scheduler status ===",
                f"Current slot: {self._current}",
                f"Total slots: {self.total_slots}",
                f"Slot duration: {self.slot_duration:g}s",
                "Schedule:",
            ]
            lines.extend(
                f"  Slot {slot.slot_id}: {slot.state.value} (node: {slot.node_id})"
                for slot in self._slots
            )
            lines.append("==================")
            return "\n".join(lines)

    def print_status(self) -> None:
        """Write the status report to standard output."""
        report = self.status_report()
        out = sys.stdout
        out.write(report + "\n")
        out.flush()