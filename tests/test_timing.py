import pytest

from vision_screen.timing import CooperativeScheduler


def test_timers_fire_in_due_order_at_their_own_time():
    scheduler = CooperativeScheduler()
    fired = []
    scheduler.call_later(300, lambda: fired.append(("b", scheduler.now_ms())))
    scheduler.call_later(100, lambda: fired.append(("a", scheduler.now_ms())))
    scheduler.call_later(300, lambda: fired.append(("c", scheduler.now_ms())))

    assert scheduler.advance(500) == 3
    assert fired == [("a", 100), ("b", 300), ("c", 300)]
    assert scheduler.now_ms() == 500


def test_timer_not_due_yet_stays_pending():
    scheduler = CooperativeScheduler()
    fired = []
    scheduler.call_later(100, lambda: fired.append(1))
    scheduler.advance(99)
    assert fired == []
    assert scheduler.pending == 1
    scheduler.advance(1)
    assert fired == [1]
    assert scheduler.pending == 0


def test_cancelled_timer_never_fires():
    scheduler = CooperativeScheduler()
    fired = []
    handle = scheduler.call_later(50, lambda: fired.append(1))
    handle.cancel()
    handle.cancel()
    scheduler.advance(100)
    assert fired == []
    assert not handle.active


def test_callback_can_schedule_follow_up_in_same_advance():
    scheduler = CooperativeScheduler()
    fired = []

    def first():
        fired.append(scheduler.now_ms())
        scheduler.call_later(200, lambda: fired.append(scheduler.now_ms()))

    scheduler.call_later(100, first)
    scheduler.advance(1000)
    assert fired == [100, 300]


def test_callback_cannot_reenter_dispatch():
    scheduler = CooperativeScheduler()
    inner = []

    def first():
        inner.append(scheduler.advance(1000))

    scheduler.call_later(10, first)
    scheduler.call_later(20, lambda: None)
    assert scheduler.advance(50) == 2
    assert inner == [0]


def test_cancel_all_clears_queue():
    scheduler = CooperativeScheduler()
    handles = [scheduler.call_later(delay, lambda: None) for delay in (10, 20, 30)]
    scheduler.cancel_all()
    assert scheduler.pending == 0
    assert all(handle.cancelled for handle in handles)


def test_run_due_reads_external_clock():
    now = [0.0]
    scheduler = CooperativeScheduler(time_source=lambda: now[0])
    fired = []
    scheduler.call_later(250, lambda: fired.append(scheduler.now_ms()))

    assert scheduler.run_due() == 0
    now[0] = 260.0
    assert scheduler.run_due() == 1
    assert fired == [260.0]


def test_advance_is_manual_clock_only():
    scheduler = CooperativeScheduler(time_source=lambda: 0.0)
    with pytest.raises(RuntimeError):
        scheduler.advance(10)


def test_advance_rejects_negative_delta():
    with pytest.raises(ValueError):
        CooperativeScheduler().advance(-1)
