# kestrel/atlas/sheet.py
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from kestrel.types import Rect


@dataclass(frozen=True, slots=True, eq=False)
class AtlasImage:
    """One packed bitmap. `pixels` is an H x W x 4 uint8 RGBA array."""

    index: int
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def to_image(self) -> Image.Image:
        return Image.fromarray(np.ascontiguousarray(self.pixels))

    def tobytes(self) -> bytes:
        return self.pixels.tobytes()


@dataclass(frozen=True, slots=True)
class FrameLocation:
    image_index: int
    rect: Rect
    reg_x: float = 0.0
    reg_y: float = 0.0


@dataclass(frozen=True, slots=True)
class Animation:
    """Named frame sequence. `next` is the animation to play afterwards."""

    name: str
    frames: Tuple[int, ...]
    next: Union[str, bool, None] = None
    speed: float = 1.0


@dataclass(frozen=True, eq=False)
class SpriteSheet:
    """
    Result of a successful atlas build. Read-only once created.
    """

    images: Tuple[AtlasImage, ...]
    frames: Mapping[int, FrameLocation]
    animations: Mapping[str, Animation] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @staticmethod
    def create(
        images: Sequence[AtlasImage],
        frames: Dict[int, FrameLocation],
        animations: Optional[Dict[str, Animation]] = None,
    ) -> SpriteSheet:
        for image in images:
            image.pixels.flags.writeable = False
        return SpriteSheet(
            images=tuple(images),
            frames=MappingProxyType(dict(sorted(frames.items()))),
            animations=MappingProxyType(dict(animations or {})),
        )

    @property
    def num_frames(self) -> int:
        return len(self.frames)

    def get_frame(self, index: int) -> FrameLocation:
        try:
            return self.frames[index]
        except KeyError:
            raise KeyError(f"Frame '{index}' not found")

    def get_animation(self, name: str) -> Animation:
        try:
            return self.animations[name]
        except KeyError:
            raise KeyError(f"Animation '{name}' not found")

    def to_dict(self, image_paths: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        """
        Sprite sheet metadata in the EaselJS data layout. Frames are
        [x, y, width, height, imageIndex, regX, regY].
        """
        if image_paths is not None and len(image_paths) != len(self.images):
            raise ValueError(
                f"Expected {len(self.images)} image paths, got {len(image_paths)}"
            )

        frames: List[List[float]] = []
        for loc in self.frames.values():
            frames.append(
                [*loc.rect, loc.image_index, loc.reg_x, loc.reg_y]
            )

        animations: Dict[str, Any] = {}
        for name, anim in self.animations.items():
            entry: Dict[str, Any] = {"frames": list(anim.frames)}
            if anim.next is not None:
                entry["next"] = anim.next
            if anim.speed != 1.0:
                entry["speed"] = anim.speed
            animations[name] = entry

        return {
            "images": list(image_paths) if image_paths is not None else [
                f"image_{i}" for i in range(len(self.images))
            ],
            "frames": frames,
            "animations": animations,
        }
