# kestrel/atlas/builder.py
from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from kestrel.atlas.build import (
    BuildState,
    FrameRequest,
    finish_build,
    start_build,
    step_build,
)
from kestrel.atlas.sheet import Animation, SpriteSheet
from kestrel.atlas.sources import FrameSetup, RectLike, resolve_source_rect
from kestrel.core.errors import (
    AlreadyRunning,
    BuildAborted,
    ConfigurationError,
    SourceRectUndeterminable,
)
from kestrel.core.events import EventBus
from kestrel.core.timing import FrameClock, TickEvent
from kestrel.settings import (
    AtlasSettings,
    validate_dimension,
    validate_padding,
    validate_scale,
    validate_time_slice,
)
from kestrel.types import FrameIndex, ListenerToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BuildProgress:
    progress: float
    drawn: int
    total: int


@dataclass(frozen=True, slots=True)
class BuildComplete:
    sheet: SpriteSheet


@dataclass(frozen=True, slots=True)
class BuildFailed:
    error: BaseException


class AtlasBuilder:
    """
    Packs queued frame sources into one or more atlas images.

    Frames are queued with add_frame() and drawn by build() in one go, or
    by build_async() a time slice per FrameClock tick. A builder owns at
    most one build at a time.
    """

    # Returned by add_frame() when no source rect can be resolved.
    SKIPPED = None

    def __init__(
        self,
        settings: Optional[AtlasSettings] = None,
        *,
        clock: Optional[FrameClock] = None,
        time_fn: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._settings = settings or AtlasSettings()
        self._clock = clock
        self._time_fn = time_fn
        # Callers subscribe to build events; nothing polls, so none are kept.
        self.events = EventBus(keep_queue=False)

        self._requests: List[FrameRequest] = []
        self._animations: Dict[str, Animation] = {}
        self._sequence = 0

        self._state: Optional[BuildState] = None
        self._progress = -1.0
        self._sheet: Optional[SpriteSheet] = None

        self._future: Optional[Future[SpriteSheet]] = None
        self._active_clock: Optional[FrameClock] = None
        self._token: Optional[ListenerToken] = None

    # Configuration

    @property
    def settings(self) -> AtlasSettings:
        return replace(self._settings)

    @property
    def max_width(self) -> int:
        return self._settings.max_width

    @max_width.setter
    def max_width(self, value: int) -> None:
        self._settings.max_width = validate_dimension("max_width", value)

    @property
    def max_height(self) -> int:
        return self._settings.max_height

    @max_height.setter
    def max_height(self, value: int) -> None:
        self._settings.max_height = validate_dimension("max_height", value)

    @property
    def scale(self) -> float:
        return self._settings.scale

    @scale.setter
    def scale(self, value: float) -> None:
        self._settings.scale = validate_scale(value)

    @property
    def padding(self) -> int:
        return self._settings.padding

    @padding.setter
    def padding(self, value: int) -> None:
        self._settings.padding = validate_padding(value)

    @property
    def time_slice(self) -> float:
        return self._settings.time_slice

    @time_slice.setter
    def time_slice(self, value: float) -> None:
        self._settings.time_slice = validate_time_slice(value)

    # State

    @property
    def progress(self) -> float:
        """-1 before a build has started, else fraction of frames drawn."""
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._state is not None

    @property
    def sprite_sheet(self) -> Optional[SpriteSheet]:
        """The last successfully built sheet."""
        return self._sheet

    @property
    def pending_count(self) -> int:
        return len(self._requests)

    def clear(self) -> None:
        """Forget the last built sheet."""
        self._sheet = None

    # Queueing

    def add_frame(
        self,
        source: Any,
        source_rect: Optional[RectLike] = None,
        scale: float = 1.0,
        setup: Union[FrameSetup, Callable[..., Any], None] = None,
        setup_args: Sequence[Any] = (),
    ) -> Optional[FrameIndex]:
        """
        Queue a frame. Nothing is drawn until the next build.

        The source rect is the explicit argument if given, otherwise the
        source's own bounds. When neither exists the frame is skipped and
        SKIPPED is returned. setup, if given, is called with setup_args
        immediately before this frame is drawn.
        """
        scale = validate_scale(scale)
        try:
            rect = resolve_source_rect(source, source_rect)
        except SourceRectUndeterminable as e:
            logger.debug("Skipping frame: %s", e)
            return self.SKIPPED

        if setup is not None and not isinstance(setup, FrameSetup):
            setup = FrameSetup(setup, tuple(setup_args))

        index = FrameIndex(len(self._requests))
        self._requests.append(
            FrameRequest(
                source=source,
                source_rect=rect,
                scale=scale,
                setup=setup,
                index=index,
                sequence=self._sequence,
            )
        )
        self._sequence += 1
        return index

    def add_animation(
        self,
        name: str,
        frames: Sequence[int],
        next: Union[str, bool, None] = None,
        speed: float = 1.0,
    ) -> None:
        """Name a sequence of queued frames for the next sheet."""
        for index in frames:
            if not 0 <= index < len(self._requests):
                raise ConfigurationError(
                    f"Animation '{name}' references unknown frame {index}"
                )
        if speed <= 0:
            raise ConfigurationError(f"speed must be > 0, got {speed}")
        self._animations[name] = Animation(name, tuple(frames), next, float(speed))

    # Building

    def _begin(self) -> BuildState:
        if self._state is not None:
            raise AlreadyRunning()

        requests, self._requests = self._requests, []
        animations, self._animations = self._animations, {}

        try:
            state = start_build(requests, replace(self._settings), animations)
        except Exception as e:
            self._progress = -1.0
            self.events.emit(BuildFailed(e))
            raise

        self._state = state
        self._progress = 0.0
        logger.debug("Starting atlas build of %d frame(s)", state.total)
        return state

    def build(self) -> SpriteSheet:
        """Draw every queued frame now and return the finished sheet."""
        state = self._begin()
        try:
            result = step_build(state, None, self._time_fn)
        except Exception as e:
            self._abandon(e)
            raise

        if self._state is not state:
            # stop() was called from inside a setup callback
            raise BuildAborted(state.drawn, state.total)

        self._report(result.progress, state)
        return self._complete(state)

    def build_async(self, clock: Optional[FrameClock] = None) -> Future[SpriteSheet]:
        """
        Start a build that draws for at most time_slice * clock.interval ms
        per tick. The first slice runs immediately.

        The returned future resolves to the sheet, or fails with
        BuildAborted if stop() is called first.
        """
        if self._state is not None:
            raise AlreadyRunning()

        clock = clock or self._clock
        if clock is None:
            raise ConfigurationError("build_async requires a FrameClock")

        self._begin()
        future: Future[SpriteSheet] = Future()
        future.set_running_or_notify_cancel()
        self._future = future
        self._active_clock = clock

        self._run_slice()
        if self._state is not None:
            self._token = clock.add_listener(
                self._on_tick, on_cancel=self._on_clock_cancel
            )
        return future

    def stop(self) -> None:
        """Abort the build in progress, if any. Partial output is discarded."""
        state = self._state
        if state is None:
            return
        error = BuildAborted(state.drawn, state.total)
        logger.warning("Atlas build aborted at %d/%d", state.drawn, state.total)
        self._abandon(error)

    # Continuation

    def _on_tick(self, event: TickEvent) -> None:
        if self._state is not None:
            self._run_slice()

    def _on_clock_cancel(self) -> None:
        self._token = None
        self.stop()

    def _run_slice(self) -> None:
        state = self._state
        clock = self._active_clock
        if state is None or clock is None:
            raise RuntimeError("No async build is running")
        budget = state.settings.time_slice * clock.interval
        started = self._time_fn()
        try:
            result = step_build(state, budget, self._time_fn)
        except Exception as e:
            logger.exception("Atlas build failed")
            self._abandon(e)
            return

        if self._state is not state:
            return

        logger.debug(
            "Atlas slice drew %d/%d in %.2fms (budget %.2fms)",
            state.drawn,
            state.total,
            (self._time_fn() - started) * 1000.0,
            budget,
        )
        self._report(result.progress, state)
        if result.done:
            self._complete(state)

    def _report(self, progress: float, state: BuildState) -> None:
        self._progress = progress
        self.events.emit(BuildProgress(progress, state.drawn, state.total))

    def _release(self) -> Optional[Future[SpriteSheet]]:
        if self._token is not None and self._active_clock is not None:
            self._active_clock.remove_listener(self._token)
        self._token = None
        self._active_clock = None
        self._state = None
        future, self._future = self._future, None
        return future

    def _complete(self, state: BuildState) -> SpriteSheet:
        sheet = finish_build(state)
        future = self._release()
        self._sheet = sheet
        self._progress = 1.0

        logger.info(
            "Built sprite sheet: %d frame(s) in %d image(s)",
            sheet.num_frames,
            len(sheet.images),
        )
        if future is not None:
            future.set_result(sheet)
        self.events.emit(BuildComplete(sheet))
        return sheet

    def _abandon(self, error: BaseException) -> None:
        if self._state is not None:
            self._state.cancel()
        future = self._release()
        self._progress = -1.0
        if future is not None:
            future.set_exception(error)
        self.events.emit(BuildFailed(error))
