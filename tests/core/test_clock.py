import pytest

from kestrel.core.errors import ConfigurationError
from kestrel.core.timing import ClockState, FrameClock, TickEvent
from kestrel.settings import ClockSettings
from tests.conftest import tick


def test_first_listener_starts_clock(clock):
    assert clock.state is ClockState.INIT
    clock.add_listener(lambda e: None)
    assert clock.state is ClockState.RUNNING


def test_start_is_idempotent(clock, fake_time):
    clock.start()
    fake_time.advance(30)
    clock.start()
    # deadline is still measured from the first start
    fake_time.advance(20)
    assert clock.update()


def test_no_tick_before_deadline(clock, fake_time):
    events = []
    clock.add_listener(events.append)

    assert not tick(clock, fake_time, 49)
    assert tick(clock, fake_time, 1)
    assert len(events) == 1
    assert events[0].delta_ms == pytest.approx(50)
    assert events[0].time_ms == pytest.approx(50)
    assert events[0].tick_count == 1


def test_update_does_nothing_until_started(clock, fake_time):
    fake_time.advance(500)
    assert not clock.update()


def test_listeners_notified_in_registration_order(clock, fake_time):
    order = []
    clock.add_listener(lambda e: order.append("a"))
    clock.add_listener(lambda e: order.append("b"))
    clock.add_listener(lambda e: order.append("c"))

    tick(clock, fake_time)
    tick(clock, fake_time)
    assert order == ["a", "b", "c", "a", "b", "c"]


def test_object_listener_with_on_tick(clock, fake_time):
    class Stage:
        def __init__(self):
            self.ticks = 0

        def on_tick(self, event: TickEvent) -> None:
            self.ticks += 1

    stage = Stage()
    clock.add_listener(stage)
    tick(clock, fake_time)
    assert stage.ticks == 1


def test_rejects_non_callable_listener(clock):
    with pytest.raises(TypeError):
        clock.add_listener(42)


def test_remove_listener(clock, fake_time):
    events = []
    token = clock.add_listener(events.append)

    assert clock.has_listener(token)
    assert clock.remove_listener(token)
    assert not clock.remove_listener(token)

    tick(clock, fake_time)
    assert events == []


def test_listener_removed_during_dispatch_is_skipped(clock, fake_time):
    seen = []
    tokens = {}

    def first(event):
        seen.append("first")
        clock.remove_listener(tokens["second"])

    tokens["first"] = clock.add_listener(first)
    tokens["second"] = clock.add_listener(lambda e: seen.append("second"))

    tick(clock, fake_time)
    assert seen == ["first"]


def test_missed_intervals_are_coalesced(clock, fake_time):
    events = []
    clock.add_listener(events.append)

    # host stalls for three and a half intervals
    assert tick(clock, fake_time, 175)
    assert len(events) == 1
    assert events[0].delta_ms == pytest.approx(175)

    # no backlog of catch-up ticks
    assert not clock.update()

    # next deadline is aligned to the original schedule (200ms)
    assert not tick(clock, fake_time, 24)
    assert tick(clock, fake_time, 1)
    assert events[1].delta_ms == pytest.approx(25)


def test_delta_is_clamped(clock, fake_time):
    events = []
    clock.max_delta = 100
    clock.add_listener(events.append)

    tick(clock, fake_time, 5000)
    assert events[0].delta_ms == pytest.approx(100)


def test_pause_does_not_suppress_ticks(clock, fake_time):
    events = []
    clock.add_listener(events.append)

    clock.set_paused(True)
    assert clock.get_paused()
    for _ in range(3):
        assert tick(clock, fake_time)

    assert len(events) == 3
    assert all(e.paused for e in events)

    clock.paused = False
    tick(clock, fake_time)
    assert events[-1].paused is False


def test_tick_counts_and_run_time(clock, fake_time):
    clock.add_listener(lambda e: None)
    tick(clock, fake_time)
    clock.paused = True
    tick(clock, fake_time)
    tick(clock, fake_time)
    clock.paused = False
    tick(clock, fake_time)

    assert clock.get_ticks() == 4
    assert clock.get_ticks(pauseable=True) == 2
    assert clock.get_time() == pytest.approx(200)
    assert clock.get_time(run_time=True) == pytest.approx(100)


def test_interval_and_fps_accessors(clock):
    assert clock.get_interval() == 50
    assert clock.get_fps() == 20

    clock.set_fps(40)
    assert clock.get_interval() == pytest.approx(25)
    assert clock.fps == 40

    clock.set_interval(30)
    # 33.333... rounded to two decimals
    assert clock.get_fps() == 33.33


@pytest.mark.parametrize("bad", [0, -5, float("nan"), float("inf")])
def test_invalid_interval_keeps_previous(clock, bad):
    with pytest.raises(ConfigurationError):
        clock.set_interval(bad)
    with pytest.raises(ConfigurationError):
        clock.set_fps(bad)
    assert clock.interval == 50
    assert clock.stats.capacity == 20


def test_invalid_settings_rejected():
    with pytest.raises(ConfigurationError):
        ClockSettings(interval_ms=0)
    with pytest.raises(ConfigurationError):
        ClockSettings(max_delta_ms=-1)
    with pytest.raises(ConfigurationError):
        ClockSettings(max_delta_ms=float("nan"))


def test_invalid_max_delta_keeps_previous(clock):
    with pytest.raises(ConfigurationError):
        clock.max_delta = float("nan")
    assert clock.max_delta == 250


def test_measured_fps_converges_to_target(clock, fake_time):
    clock.add_listener(lambda e: None)
    for _ in range(20):
        tick(clock, fake_time)

    assert clock.get_measured_fps(20) == pytest.approx(20, abs=0.5)
    assert clock.get_measured_fps() == pytest.approx(20, abs=0.5)


def test_measured_fps_reflects_slow_host(clock, fake_time):
    clock.add_listener(lambda e: None)
    for _ in range(10):
        tick(clock, fake_time, 100)

    assert clock.get_measured_fps(10) == pytest.approx(10, abs=0.5)


def test_measured_tick_time(clock, fake_time):
    clock.add_listener(lambda e: fake_time.advance(8))
    tick(clock, fake_time)
    tick(clock, fake_time)

    assert clock.get_measured_tick_time() == pytest.approx(8)
    assert clock.get_measured_tick_time(1) == pytest.approx(8)


def test_event_carries_previous_run_time(clock, fake_time):
    events = []
    clock.add_listener(lambda e: fake_time.advance(5))
    clock.add_listener(events.append)

    tick(clock, fake_time)
    tick(clock, fake_time)
    assert events[0].run_time_ms == 0
    assert events[1].run_time_ms == pytest.approx(5)


def test_measurements_empty_before_ticks(clock):
    assert clock.get_measured_fps() == 0.0
    assert clock.get_measured_tick_time() == 0.0


def test_stop_clears_listeners_and_cancels(clock, fake_time):
    cancelled = []
    events = []
    clock.add_listener(events.append, on_cancel=lambda: cancelled.append(True))
    clock.add_listener(lambda e: None)

    clock.stop()
    assert clock.state is ClockState.STOPPED
    assert clock.listener_count == 0
    assert cancelled == [True]

    assert not tick(clock, fake_time)
    assert events == []


def test_restart_after_stop_is_fresh(clock, fake_time):
    clock.add_listener(lambda e: None)
    tick(clock, fake_time)
    clock.stop()

    fake_time.advance(1000)
    events = []
    clock.add_listener(events.append)
    assert clock.get_ticks() == 0
    assert clock.get_measured_fps() == 0.0

    tick(clock, fake_time)
    assert events[0].tick_count == 1
    assert events[0].delta_ms == pytest.approx(50)


def test_listener_can_stop_clock(clock, fake_time):
    seen = []
    clock.add_listener(lambda e: clock.stop())
    clock.add_listener(seen.append)

    tick(clock, fake_time)
    assert seen == []
    assert clock.state is ClockState.STOPPED


def test_listener_error_propagates_but_sample_recorded(clock, fake_time):
    failures = [RuntimeError("boom")]
    seen = []

    def broken(event):
        if failures:
            raise failures.pop()

    clock.add_listener(broken)
    clock.add_listener(lambda e: seen.append(e.tick_count))
    with pytest.raises(RuntimeError):
        tick(clock, fake_time)
    assert len(clock.stats) == 1

    # the later listener missed only the failing tick
    assert seen == []
    tick(clock, fake_time)
    assert seen == [2]


def test_changing_interval_reschedules(clock, fake_time):
    events = []
    clock.add_listener(events.append)
    clock.set_interval(100)

    assert not tick(clock, fake_time, 50)
    assert tick(clock, fake_time, 50)
    assert clock.stats.capacity == 10


def test_run_paces_until_condition(fake_time):
    clock = FrameClock(ClockSettings(interval_ms=50), time_fn=fake_time)
    events = []
    clock.add_listener(events.append)
    sleeps = []

    def sleep(seconds):
        sleeps.append(seconds)
        fake_time.advance(seconds * 1000)

    clock.run(lambda: len(events) < 3, sleep_fn=sleep)

    assert len(events) == 3
    assert sleeps == pytest.approx([0.05, 0.05, 0.05])
    assert clock.get_measured_fps() == pytest.approx(20, abs=0.5)


def test_independent_instances(fake_time):
    a = FrameClock(ClockSettings(interval_ms=50), time_fn=fake_time)
    b = FrameClock(ClockSettings(interval_ms=100), time_fn=fake_time)
    a.start()
    b.start()

    fake_time.advance(50)
    assert a.update()
    assert not b.update()
