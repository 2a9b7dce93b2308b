import time
from datetime import timedelta

import pytest

from tdmanet.scheduler import SchedulerError, SlotState, TDMAScheduler


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def make(total=10, clock=None):
    return TDMAScheduler(total, 1.0, clock)


def test_all_slots_start_free(clock):
    sched = make(4, clock)
    assert sched.schedule() == {}
    assert all(sched.slot_status(i).state is SlotState.FREE for i in range(4))
    assert sched.next_available_slot() == 0


def test_allocate_prefers_current_then_next(clock):
    sched = make(10, clock)
    assert sched.allocate_time_slot("A", 1) == 0
    assert sched.allocate_time_slot("B", 1) == 1
    assert sched.allocate_time_slot("C", 1) == 2
    assert sched.schedule() == {0: "A", 1: "B", 2: "C"}


def test_allocate_returns_existing_slot(clock):
    sched = make(10, clock)
    first = sched.allocate_time_slot("A", 1)
    clock.now += 9.0
    assert sched.allocate_time_slot("A", 1) == first
    assert sched.schedule() == {first: "A"}


def test_allocate_follows_current_slot(clock):
    sched = make(10, clock)
    sched.advance()
    sched.advance()
    sched.advance()
    assert sched.current_slot() == 3
    assert sched.allocate_time_slot("A", 1) == 3


def test_expired_assignment_is_released(clock):
    sched = make(10, clock)
    assert sched.allocate_time_slot("A", 1) == 0
    for _ in range(3):
        sched.advance()
    clock.now += 11.0
    assert sched.allocate_time_slot("A", 1) == 3
    assert sched.slot_status(0).state is SlotState.FREE
    assert sched.schedule() == {3: "A"}


def test_full_schedule_raises_then_reuses_oldest(clock):
    sched = make(3, clock)
    for node in "ABC":
        sched.allocate_time_slot(node, 1)
    clock.now += 1.0
    with pytest.raises(SchedulerError):
        sched.allocate_time_slot("D", 1)
    clock.now += 5.0
    assert sched.allocate_time_slot("D", 1) == 0
    assert sched.schedule() == {0: "D", 1: "B", 2: "C"}


def test_next_available_slot_none_left(clock):
    sched = make(2, clock)
    sched.allocate_time_slot("A", 1)
    sched.allocate_time_slot("B", 1)
    with pytest.raises(SchedulerError):
        sched.next_available_slot()


def test_consecutive_allocation(clock):
    sched = make(5, clock)
    assert sched.allocate_consecutive_slots("A", 2) == [0, 1]
    assert sched.allocate_consecutive_slots("B", 3) == [2, 3, 4]
    with pytest.raises(SchedulerError):
        sched.allocate_consecutive_slots("C", 1)
    sched.release_time_slot(3)
    assert sched.allocate_consecutive_slots("C", 1) == [3]


def test_consecutive_too_many(clock):
    sched = make(3, clock)
    with pytest.raises(SchedulerError):
        sched.allocate_consecutive_slots("A", 4)
    assert sched.schedule() == {}


def test_consecutive_skips_occupied(clock):
    sched = make(5, clock)
    sched.allocate_time_slot("X", 1)
    sched.advance()
    sched.advance()
    sched.allocate_time_slot("Y", 1)
    assert sched.allocate_consecutive_slots("Z", 2) == [3, 4]


def test_release_resets_slot(clock):
    sched = make(4, clock)
    slot = sched.allocate_time_slot("A", 1)
    sched.slot_status(slot).fragment_id = 7
    sched.release_time_slot(slot)
    status = sched.slot_status(slot)
    assert status.state is SlotState.FREE
    assert status.node_id == ""
    assert status.fragment_id == 0


@pytest.mark.parametrize("bad", [-1, 4, 100])
def test_invalid_slot_ids(clock, bad):
    sched = make(4, clock)
    with pytest.raises(SchedulerError):
        sched.release_time_slot(bad)
    with pytest.raises(SchedulerError):
        sched.slot_status(bad)


def test_advance_wraps():
    sched = TDMAScheduler(3, timedelta(seconds=1))
    assert [sched.advance() for _ in range(4)] == [1, 2, 0, 1]


def test_update_priority_leaves_schedule(clock):
    sched = make(4, clock)
    sched.allocate_time_slot("A", 1)
    sched.update_priority("A", 5)
    assert sched.schedule() == {0: "A"}


def test_status_report(clock, capsys):
    sched = make(2, clock)
    sched.allocate_time_slot("A", 1)
    report = sched.status_report()
    assert "Current slot: 0" in report
    assert "Total slots: 2" in report
    assert "Slot duration: 1s" in report
    assert "Slot 0: ASSIGNED (node: A)" in report
    assert "Slot 1: FREE (node: )" in report
    sched.print_status()
    assert capsys.readouterr().out == report + "\n"


def test_start_and_stop_advance_slots():
    sched = TDMAScheduler(1000, 0.005)
    sched.start()
    time.sleep(0.2)
    sched.stop()
    stopped_at = sched.current_slot()
    time.sleep(0.05)
    assert 0 < stopped_at < 1000
    assert sched.current_slot() == stopped_at


def test_rejects_empty_cycle():
    with pytest.raises(ValueError):
        TDMAScheduler(0, 1.0)