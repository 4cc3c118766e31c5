# kestrel/settings.py
from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Any, Mapping, Type, TypeVar

from kestrel.core.errors import ConfigurationError

S = TypeVar("S")

MIN_TIME_SLICE = 0.01
MAX_TIME_SLICE = 0.99


def _from_mapping(cls: Type[S], data: Mapping[str, Any]) -> S:
    known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
    unknown = set(data) - known
    if unknown:
        raise ConfigurationError(
            f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}"
        )
    return cls(**data)


def _positive(name: str, value: float) -> float:
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{name} must be a finite number > 0, got {value}")
    return float(value)


def validate_interval(interval_ms: float) -> float:
    return _positive("interval", interval_ms)


def validate_max_delta(value: float) -> float:
    return _positive("max_delta", value)


def validate_fps(value: float) -> float:
    return _positive("fps", value)


def validate_time_slice(value: float) -> float:
    if not MIN_TIME_SLICE <= value <= MAX_TIME_SLICE:
        raise ConfigurationError(
            f"time_slice must be within [{MIN_TIME_SLICE}, {MAX_TIME_SLICE}],"
            f" got {value}"
        )
    return float(value)


def validate_dimension(name: str, value: int) -> int:
    if not math.isfinite(value) or int(value) != value or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value}")
    return int(value)


def validate_padding(value: int) -> int:
    if not math.isfinite(value) or int(value) != value or value < 0:
        raise ConfigurationError(f"padding must be an integer >= 0, got {value}")
    return int(value)


def validate_scale(value: float) -> float:
    return _positive("scale", value)


@dataclass(slots=True)
class ClockSettings:
    """
    Resource: Target pacing for a FrameClock.
    """

    # 50ms <=> 20 ticks per second
    interval_ms: float = 50.0

    # Upper bound on a single tick's delta, so a suspended host does not
    # produce one enormous jump when it resumes.
    max_delta_ms: float = 250.0

    def __post_init__(self) -> None:
        self.interval_ms = validate_interval(self.interval_ms)
        self.max_delta_ms = validate_max_delta(self.max_delta_ms)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ClockSettings:
        return _from_mapping(cls, data)


@dataclass(slots=True)
class AtlasSettings:
    """
    Resource: Limits and pacing for an AtlasBuilder.
    """

    max_width: int = 2048
    max_height: int = 2048

    # Multiplied against every frame's own scale.
    scale: float = 1.0

    # Gap between frames, preserves antialiasing on drawn edges.
    padding: int = 1

    # Fraction of each tick interval an async build may use.
    time_slice: float = 0.3

    # Round finished images up to the next power of two (clamped to max).
    power_of_two: bool = True

    def __post_init__(self) -> None:
        self.max_width = validate_dimension("max_width", self.max_width)
        self.max_height = validate_dimension("max_height", self.max_height)
        self.scale = validate_scale(self.scale)
        self.padding = validate_padding(self.padding)
        self.time_slice = validate_time_slice(self.time_slice)
        self.power_of_two = bool(self.power_of_two)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> AtlasSettings:
        return _from_mapping(cls, data)
