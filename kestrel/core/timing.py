# kestrel/core/timing.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional, Protocol, Union

from kestrel.core.stats import StatField, StatsRingBuffer, capacity_for_interval
from kestrel.settings import (
    ClockSettings,
    validate_fps,
    validate_interval,
    validate_max_delta,
)
from kestrel.types import ListenerToken

logger = logging.getLogger(__name__)

# Slack for float rounding when comparing ms deadlines.
_EPSILON_MS = 1e-6


@dataclass(frozen=True, slots=True)
class TickEvent:
    # ms since the clock was started
    time_ms: float
    # ms since the previous tick, clamped to max_delta_ms
    delta_ms: float
    paused: bool
    # ms the previous tick spent inside its own dispatch
    run_time_ms: float
    # ticks dispatched in this run, including this one
    tick_count: int


class TickListener(Protocol):
    def on_tick(self, event: TickEvent) -> None: ...


Listener = Union[Callable[[TickEvent], Any], TickListener]


class ClockState(Enum):
    INIT = auto()
    RUNNING = auto()
    STOPPED = auto()


@dataclass(slots=True)
class _Registration:
    callback: Callable[[TickEvent], Any]
    on_cancel: Optional[Callable[[], Any]] = None


class FrameClock:
    """
    Broadcasts tick events to registered listeners at a target interval.

    The clock never runs on its own thread. The host calls update() from
    its loop (or hands control to run()), and a tick is dispatched whenever
    the next deadline has passed. Missed intervals are coalesced into a
    single tick instead of being replayed.

    Pausing only flags the events; listeners keep receiving ticks.
    """

    def __init__(
        self,
        settings: Optional[ClockSettings] = None,
        *,
        time_fn: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._settings = settings or ClockSettings()
        self._time_fn = time_fn

        self._state = ClockState.INIT
        self._listeners: Dict[ListenerToken, _Registration] = {}
        self._next_token = 0

        self._stats = StatsRingBuffer(
            capacity_for_interval(self._settings.interval_ms)
        )

        self._paused = False
        self._start_time = 0.0
        self._stop_time = 0.0
        self._last_tick = 0.0
        self._next_deadline = 0.0
        self._paused_ms = 0.0
        self._last_run_time = 0.0
        self._ticks = 0
        self._pauseable_ticks = 0

    def _now_ms(self) -> float:
        return self._time_fn() * 1000.0

    # Lifecycle

    @property
    def state(self) -> ClockState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ClockState.RUNNING

    def start(self) -> None:
        """Begin a run. Does nothing if the clock is already running."""
        if self._state is ClockState.RUNNING:
            return

        now = self._now_ms()
        self._start_time = now
        self._last_tick = now
        self._next_deadline = now + self._settings.interval_ms
        self._paused_ms = 0.0
        self._last_run_time = 0.0
        self._ticks = 0
        self._pauseable_ticks = 0
        self._stats.clear()

        self._state = ClockState.RUNNING
        logger.debug(
            "FrameClock started (interval=%.3fms)", self._settings.interval_ms
        )

    def stop(self) -> None:
        """
        Stop ticking and drop every listener.

        Registrations made with an on_cancel callback are notified after the
        listener table has been cleared.
        """
        if self._state is ClockState.RUNNING:
            self._stop_time = self._now_ms()
        self._state = ClockState.STOPPED

        dropped = list(self._listeners.values())
        self._listeners.clear()

        for reg in dropped:
            if reg.on_cancel is not None:
                reg.on_cancel()

        logger.debug("FrameClock stopped, %d listener(s) dropped", len(dropped))

    # Listeners

    def add_listener(
        self,
        listener: Listener,
        *,
        on_cancel: Optional[Callable[[], Any]] = None,
    ) -> ListenerToken:
        """
        Register a callable or an object with an on_tick() method.

        Starts the clock if it is not running yet. The returned token is the
        only handle for remove_listener().
        """
        on_tick = getattr(listener, "on_tick", None)
        if callable(on_tick):
            callback = on_tick
        elif callable(listener):
            callback = listener
        else:
            raise TypeError(
                f"Listener must be callable or define on_tick(), "
                f"not {type(listener).__name__}"
            )

        token = ListenerToken(self._next_token)
        self._next_token += 1
        self._listeners[token] = _Registration(callback, on_cancel)

        if self._state is not ClockState.RUNNING:
            self.start()

        return token

    def remove_listener(self, token: ListenerToken) -> bool:
        return self._listeners.pop(token, None) is not None

    def has_listener(self, token: ListenerToken) -> bool:
        return token in self._listeners

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    # Configuration

    @property
    def interval(self) -> float:
        """Target ms between ticks."""
        return self._settings.interval_ms

    @interval.setter
    def interval(self, interval_ms: float) -> None:
        interval_ms = validate_interval(interval_ms)
        self._stats.resize(capacity_for_interval(interval_ms))
        self._settings.interval_ms = interval_ms
        if self._state is ClockState.RUNNING:
            self._next_deadline = self._last_tick + interval_ms

    def set_interval(self, interval_ms: float) -> None:
        self.interval = interval_ms

    def get_interval(self) -> float:
        return self.interval

    @property
    def fps(self) -> float:
        """Target ticks per second, rounded half-even to 2 decimals."""
        return round(1000.0 / self._settings.interval_ms, 2)

    @fps.setter
    def fps(self, value: float) -> None:
        self.interval = 1000.0 / validate_fps(value)

    def set_fps(self, value: float) -> None:
        self.fps = value

    def get_fps(self) -> float:
        return self.fps

    @property
    def max_delta(self) -> float:
        return self._settings.max_delta_ms

    @max_delta.setter
    def max_delta(self, value: float) -> None:
        self._settings.max_delta_ms = validate_max_delta(value)

    @property
    def paused(self) -> bool:
        return self._paused

    @paused.setter
    def paused(self, value: bool) -> None:
        self._paused = bool(value)

    def set_paused(self, value: bool) -> None:
        self.paused = value

    def get_paused(self) -> bool:
        return self._paused

    # Measurement

    def _default_samples(self, n: Optional[int]) -> int:
        if n is None:
            return capacity_for_interval(self._settings.interval_ms)
        return n

    def get_measured_tick_time(self, n: Optional[int] = None) -> float:
        """Average ms spent dispatching over the last n ticks."""
        return self._stats.average(StatField.RUN_TIME, self._default_samples(n))

    def get_measured_fps(self, n: Optional[int] = None) -> float:
        """Achieved ticks per second over the last n ticks."""
        avg_delta = self._stats.average(StatField.DELTA, self._default_samples(n))
        if avg_delta <= 0:
            return 0.0
        return 1000.0 / avg_delta

    def get_time(self, run_time: bool = False) -> float:
        """
        ms since the clock started. With run_time=True, time spent while
        paused is excluded.
        """
        if self._state is ClockState.INIT:
            return 0.0
        end = (
            self._now_ms()
            if self._state is ClockState.RUNNING
            else self._stop_time
        )
        elapsed = end - self._start_time
        if run_time:
            elapsed -= self._paused_ms
        return elapsed

    def get_ticks(self, pauseable: bool = False) -> int:
        """Ticks dispatched this run. pauseable=True counts unpaused ticks only."""
        return self._pauseable_ticks if pauseable else self._ticks

    @property
    def stats(self) -> StatsRingBuffer:
        return self._stats

    # Scheduling

    def time_until_next_tick(self) -> float:
        if self._state is not ClockState.RUNNING:
            return 0.0
        return max(0.0, self._next_deadline - self._now_ms())

    def update(self) -> bool:
        """
        Scheduler wake-up. Dispatches one tick if the deadline has passed.

        An exception from a listener propagates out of this call, and the
        listeners registered after it miss that tick. The timing sample is
        recorded either way and the next tick goes to every listener.

        Returns True when a tick was dispatched.
        """
        if self._state is not ClockState.RUNNING:
            return False

        now = self._now_ms()
        if now + _EPSILON_MS < self._next_deadline:
            return False

        elapsed = now - self._last_tick
        delta = min(elapsed, self._settings.max_delta_ms)
        paused = self._paused
        if paused:
            self._paused_ms += elapsed

        self._last_tick = now
        interval = self._settings.interval_ms
        while self._next_deadline <= now + _EPSILON_MS:
            self._next_deadline += interval

        self._ticks += 1
        if not paused:
            self._pauseable_ticks += 1

        event = TickEvent(
            time_ms=now - self._start_time,
            delta_ms=delta,
            paused=paused,
            run_time_ms=self._last_run_time,
            tick_count=self._ticks,
        )
        self._dispatch(event, now, delta)
        return True

    def _dispatch(self, event: TickEvent, started: float, delta: float) -> None:
        try:
            for token, reg in list(self._listeners.items()):
                # A listener may stop the clock or remove a later listener.
                if self._state is not ClockState.RUNNING:
                    break
                if token not in self._listeners:
                    continue
                reg.callback(event)
        finally:
            run_time = max(0.0, self._now_ms() - started)
            self._last_run_time = run_time
            self._stats.push(delta, run_time)

    def run(
        self,
        should_continue: Optional[Callable[[], bool]] = None,
        *,
        sleep_fn: Callable[[float], Any] = time.sleep,
    ) -> None:
        """
        Pace a blocking loop with this clock until it is stopped or
        should_continue() returns False.
        """
        self.start()
        while self._state is ClockState.RUNNING:
            if should_continue is not None and not should_continue():
                break
            wait_ms = self.time_until_next_tick()
            if wait_ms > 0:
                sleep_fn(wait_ms / 1000.0)
            self.update()
