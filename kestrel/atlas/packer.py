# kestrel/atlas/packer.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

from kestrel.core.errors import DimensionsExceeded

Size = Tuple[int, int]  # width, height


@dataclass(frozen=True, slots=True)
class Placement:
    image_index: int
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class PackResult:
    placements: Tuple[Placement, ...]
    # (width, height) per image, in image order
    image_sizes: Tuple[Size, ...]


def next_power_of_two(value: int) -> int:
    if value <= 1:
        return 1
    return 1 << (int(value) - 1).bit_length()


def packing_order(sizes: Sequence[Size]) -> List[int]:
    """
    Indices of sizes in packing order: tallest first, then widest, then
    original position.
    """
    return sorted(
        range(len(sizes)),
        key=lambda i: (-sizes[i][1], -sizes[i][0], i),
    )


@dataclass
class _Shelf:
    y: int
    height: int = 0
    cursor: int = 0


@dataclass
class ShelfPacker:
    """
    Incremental shelf packer.

    Frames are placed left to right on the current shelf. When a frame
    does not fit, the shelf is closed and a new one opened below it. When
    the new shelf would run past max_height, a new image is started.
    """

    max_width: int
    max_height: int
    padding: int = 1

    _image_index: int = 0
    _shelf: _Shelf = field(default_factory=lambda: _Shelf(y=0))
    # used (width, height) per image
    _extents: List[List[int]] = field(default_factory=lambda: [[0, 0]])

    @property
    def image_index(self) -> int:
        """Index of the image currently being filled."""
        return self._image_index

    def check(self, width: int, height: int) -> None:
        if width > self.max_width or height > self.max_height:
            raise DimensionsExceeded(width, height, self.max_width, self.max_height)

    def place(self, width: int, height: int) -> Placement:
        self.check(width, height)
        shelf = self._shelf

        fits_row = shelf.cursor + width <= self.max_width
        fits_column = shelf.y + height <= self.max_height
        if not (fits_row and fits_column):
            next_y = shelf.y + shelf.height + self.padding
            if shelf.cursor == 0:
                # Nothing on this shelf yet, reuse its position.
                next_y = shelf.y
            if next_y + height > self.max_height:
                self._new_image()
            else:
                self._shelf = _Shelf(y=next_y)
            shelf = self._shelf

        placement = Placement(self._image_index, shelf.cursor, shelf.y, width, height)
        shelf.cursor += width + self.padding
        shelf.height = max(shelf.height, height)

        extent = self._extents[self._image_index]
        extent[0] = max(extent[0], placement.x + width)
        extent[1] = max(extent[1], placement.y + height)
        return placement

    def _new_image(self) -> None:
        self._image_index += 1
        self._shelf = _Shelf(y=0)
        self._extents.append([0, 0])

    def image_sizes(self, power_of_two: bool = False) -> Tuple[Size, ...]:
        sizes = []
        for width, height in self._extents:
            if width == 0 or height == 0:
                continue
            if power_of_two:
                width = min(next_power_of_two(width), self.max_width)
                height = min(next_power_of_two(height), self.max_height)
            sizes.append((width, height))
        return tuple(sizes)


def pack(
    items: Sequence[Size],
    max_width: int,
    max_height: int,
    *,
    padding: int = 1,
    power_of_two: bool = False,
) -> PackResult:
    """
    Place items in the given order. Pure: identical input gives identical
    output, and nothing outside the call is touched.

    Raises DimensionsExceeded if any single item is larger than the
    maximum image.
    """
    packer = ShelfPacker(max_width, max_height, padding)
    for width, height in items:
        packer.check(width, height)

    placements = tuple(packer.place(w, h) for w, h in items)
    return PackResult(placements, packer.image_sizes(power_of_two))
