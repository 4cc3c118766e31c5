from typing import List, Optional, Tuple

import pytest
from PIL import Image

from kestrel.atlas.builder import AtlasBuilder
from kestrel.core.timing import FrameClock
from kestrel.settings import AtlasSettings, ClockSettings
from kestrel.types import Rect


class FakeTime:
    """Manually advanced stand-in for time.perf_counter (seconds)."""

    def __init__(self, start_ms: float = 0.0) -> None:
        self.ms = start_ms

    def __call__(self) -> float:
        return self.ms / 1000.0

    def advance(self, ms: float) -> None:
        self.ms += ms


class SolidSource:
    """Frame source that renders a flat color of its own size."""

    def __init__(
        self,
        width: float,
        height: float,
        color: Tuple[int, int, int, int] = (255, 0, 0, 255),
        reg_x: float = 0.0,
        reg_y: float = 0.0,
    ) -> None:
        self.bounds = Rect(0, 0, width, height)
        self.color = color
        self.reg_x = reg_x
        self.reg_y = reg_y
        self.render_calls: List[Tuple[Rect, float]] = []

    def render(self, source_rect: Rect, scale: float) -> Image.Image:
        self.render_calls.append((source_rect, scale))
        size = (
            max(1, round(source_rect.width * scale)),
            max(1, round(source_rect.height * scale)),
        )
        return Image.new("RGBA", size, self.color)


class BoundlessSource:
    """Has no bounds of any kind."""

    def render(self, source_rect: Rect, scale: float) -> Image.Image:
        raise AssertionError("should never be drawn")


class SlowSource(SolidSource):
    """Advances a FakeTime by a fixed amount every time it is drawn."""

    def __init__(self, fake_time: FakeTime, cost_ms: float, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._fake_time = fake_time
        self._cost_ms = cost_ms

    def render(self, source_rect: Rect, scale: float) -> Image.Image:
        self._fake_time.advance(self._cost_ms)
        return super().render(source_rect, scale)


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def clock(fake_time):
    """A FrameClock at the default 50ms interval driven by fake_time."""
    return FrameClock(ClockSettings(), time_fn=fake_time)


@pytest.fixture
def builder(fake_time):
    return AtlasBuilder(AtlasSettings(power_of_two=False), time_fn=fake_time)


def tick(clock: FrameClock, fake_time: FakeTime, ms: Optional[float] = None) -> bool:
    """Advance fake time by one interval (or ms) and wake the clock."""
    fake_time.advance(clock.interval if ms is None else ms)
    return clock.update()
