# kestrel/atlas/sources.py
from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, Tuple, Union

from PIL import Image

from kestrel.core.errors import SourceRectUndeterminable
from kestrel.types import Rect

RectLike = Union[Rect, Tuple[float, float, float, float], Sequence[float]]

# Attributes probed, in order, when no explicit source rect is given.
_BOUNDS_ATTRS = ("bounds", "nominal_bounds")


class FrameSource(Protocol):
    """
    Anything that can draw itself into an atlas frame.

    Optional members: get_bounds() / bounds / nominal_bounds for the
    default source rect, reg_x / reg_y for registration offsets.
    """

    def render(self, source_rect: Rect, scale: float) -> Image.Image: ...


@dataclass(frozen=True, slots=True)
class FrameSetup:
    """Call made immediately before a frame is drawn."""

    callback: Callable[..., Any]
    args: Tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)

    def __call__(self) -> None:
        self.callback(*self.args, **self.kwargs)


def as_rect(value: RectLike) -> Rect:
    if isinstance(value, Rect):
        return value
    x, y, w, h = value
    return Rect(x, y, w, h)


def resolve_source_rect(source: Any, explicit: Optional[RectLike] = None) -> Rect:
    """
    Source rect for a frame: the explicit value, else source.get_bounds(),
    else a bounds / nominal_bounds attribute.
    """
    candidates = []
    if explicit is not None:
        candidates.append(explicit)
    else:
        get_bounds = getattr(source, "get_bounds", None)
        if callable(get_bounds):
            candidates.append(get_bounds())
        for attr in _BOUNDS_ATTRS:
            candidates.append(getattr(source, attr, None))

    for candidate in candidates:
        if candidate is None:
            continue
        try:
            rect = as_rect(candidate)
            if rect.is_empty:
                continue
        except (TypeError, ValueError):
            continue
        return rect

    raise SourceRectUndeterminable(source)


def scaled_size(rect: Rect, scale: float) -> Tuple[int, int]:
    """Pixel size of a rect drawn at the given scale, never below 1x1."""
    return (
        max(1, math.ceil(rect.width * scale)),
        max(1, math.ceil(rect.height * scale)),
    )


class ImageSource:
    """Frame source backed by a Pillow image."""

    def __init__(
        self, image: Image.Image, reg_x: float = 0.0, reg_y: float = 0.0
    ) -> None:
        self.image = image.convert("RGBA")
        self.reg_x = reg_x
        self.reg_y = reg_y

    @classmethod
    def open(cls, path: Path, **kwargs: Any) -> ImageSource:
        with Image.open(path) as img:
            img.load()
            return cls(img, **kwargs)

    def get_bounds(self) -> Rect:
        width, height = self.image.size
        return Rect.from_size(width, height)

    def render(self, source_rect: Rect, scale: float) -> Image.Image:
        box = (
            int(source_rect.x),
            int(source_rect.y),
            int(source_rect.right),
            int(source_rect.bottom),
        )
        region = self.image.crop(box)
        size = scaled_size(source_rect, scale)
        if region.size != size:
            region = region.resize(size, Image.Resampling.LANCZOS)
        return region
