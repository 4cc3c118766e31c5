# kestrel/atlas/build.py
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image

from kestrel.atlas.packer import Placement, ShelfPacker, Size, packing_order
from kestrel.atlas.sheet import Animation, AtlasImage, FrameLocation, SpriteSheet
from kestrel.atlas.sources import FrameSetup, scaled_size
from kestrel.settings import AtlasSettings
from kestrel.types import Rect


@dataclass(frozen=True, slots=True)
class FrameRequest:
    source: Any
    source_rect: Rect
    scale: float
    setup: Optional[FrameSetup]
    # frame index handed back by add_frame
    index: int
    # insertion counter, last packing tie-break
    sequence: int


@dataclass
class BuildState:
    """
    Everything an in-progress build needs. A build is advanced only by
    passing this to step_build().
    """

    settings: AtlasSettings
    pending: Deque[Tuple[FrameRequest, Size]]
    packer: ShelfPacker
    total: int
    animations: Dict[str, Animation] = field(default_factory=dict)
    canvases: List[np.ndarray] = field(default_factory=list)
    frames: Dict[int, FrameLocation] = field(default_factory=dict)
    drawn: int = 0
    cancelled: bool = False

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 1.0
        return self.drawn / self.total

    @property
    def done(self) -> bool:
        return not self.pending and not self.cancelled

    def cancel(self) -> None:
        """Drop remaining frames and pixels. Nothing more is drawn."""
        self.cancelled = True
        self.pending.clear()
        self.canvases.clear()


@dataclass(frozen=True, slots=True)
class StepResult:
    state: BuildState
    done: bool
    progress: float


def effective_size(request: FrameRequest, global_scale: float) -> Size:
    return scaled_size(request.source_rect, request.scale * global_scale)


def start_build(
    requests: Sequence[FrameRequest],
    settings: AtlasSettings,
    animations: Optional[Dict[str, Animation]] = None,
) -> BuildState:
    """
    Order the requests for packing and validate every frame size up front,
    so an oversized frame fails the build before anything is drawn.
    """
    packer = ShelfPacker(settings.max_width, settings.max_height, settings.padding)
    sizes = [effective_size(r, settings.scale) for r in requests]
    for width, height in sizes:
        packer.check(width, height)

    order = packing_order(sizes)
    pending = deque((requests[i], sizes[i]) for i in order)
    return BuildState(
        settings=settings,
        pending=pending,
        packer=packer,
        total=len(requests),
        animations=dict(animations or {}),
    )


def _canvas(state: BuildState, image_index: int) -> np.ndarray:
    while len(state.canvases) <= image_index:
        state.canvases.append(
            np.zeros(
                (state.settings.max_height, state.settings.max_width, 4),
                dtype=np.uint8,
            )
        )
    return state.canvases[image_index]


def _blit(canvas: np.ndarray, rendered: Image.Image, placement: Placement) -> None:
    pixels = np.asarray(rendered.convert("RGBA"), dtype=np.uint8)
    height = min(pixels.shape[0], placement.height)
    width = min(pixels.shape[1], placement.width)
    y, x = placement.y, placement.x
    canvas[y : y + height, x : x + width] = pixels[:height, :width]


def draw_next(state: BuildState) -> Optional[FrameLocation]:
    request, (width, height) = state.pending.popleft()
    placement = state.packer.place(width, height)
    canvas = _canvas(state, placement.image_index)

    if request.setup is not None:
        request.setup()
        if state.cancelled:
            return None

    rendered = request.source.render(
        request.source_rect, request.scale * state.settings.scale
    )
    _blit(canvas, rendered, placement)

    location = FrameLocation(
        image_index=placement.image_index,
        rect=Rect(placement.x, placement.y, width, height),
        reg_x=getattr(request.source, "reg_x", 0.0),
        reg_y=getattr(request.source, "reg_y", 0.0),
    )
    state.frames[request.index] = location
    state.drawn += 1
    return location


def step_build(
    state: BuildState,
    budget_ms: Optional[float] = None,
    time_fn: Callable[[], float] = time.perf_counter,
) -> StepResult:
    """
    Draw frames until the budget is spent or nothing is left. At least one
    frame is drawn per call while any remain. budget_ms=None draws all.
    """
    started = time_fn() * 1000.0
    while state.pending:
        draw_next(state)
        if budget_ms is not None and time_fn() * 1000.0 - started >= budget_ms:
            break
    return StepResult(state, state.done, state.progress)


def finish_build(state: BuildState) -> SpriteSheet:
    if not state.done:
        raise RuntimeError("Cannot finish a cancelled or incomplete build")

    sizes = state.packer.image_sizes(state.settings.power_of_two)
    images = [
        AtlasImage(index=i, pixels=state.canvases[i][:height, :width].copy())
        for i, (width, height) in enumerate(sizes)
    ]
    return SpriteSheet.create(images, state.frames, state.animations)
