# kestrel/types.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, NewType

FrameIndex = NewType("FrameIndex", int)
ListenerToken = NewType("ListenerToken", int)


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @staticmethod
    def from_size(width: float, height: float) -> Rect:
        return Rect(0, 0, width, height)

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def __iter__(self) -> Iterator[float]:
        yield self.x
        yield self.y
        yield self.width
        yield self.height

    def intersects(self, other: Rect) -> bool:
        """Overlap test. Rects that only share an edge do not intersect."""
        return not (
            self.right <= other.x
            or other.right <= self.x
            or self.bottom <= other.y
            or other.bottom <= self.y
        )

    def contains(self, other: Rect) -> bool:
        return (
            other.x >= self.x
            and other.y >= self.y
            and other.right <= self.right
            and other.bottom <= self.bottom
        )
