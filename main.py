"""
Pack a directory of PNG images into a sprite sheet.

Writes <out>_<n>.png for each atlas image and <out>.json with the frame
metadata. With --async the build is spread over FrameClock ticks, the way
a running game would build sheets without stalling its loop.

    python main.py sprites/ build/sheet --async --fps 30
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from kestrel.atlas import AtlasBuilder, BuildProgress, ImageSource, SpriteSheet
from kestrel.core.errors import KestrelError
from kestrel.core.timing import FrameClock
from kestrel.settings import AtlasSettings, ClockSettings

logger = logging.getLogger("kestrel.main")


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("src", type=Path, help="directory of .png files")
    parser.add_argument("out", type=Path, help="output path prefix")
    parser.add_argument("--max-size", type=int, default=2048)
    parser.add_argument("--padding", type=int, default=1)
    parser.add_argument("--scale", type=float, default=1.0)
    parser.add_argument("--fps", type=float, default=20.0)
    parser.add_argument("--time-slice", type=float, default=0.3)
    parser.add_argument("--exact-size", action="store_true",
                        help="do not round images up to powers of two")
    parser.add_argument("--async", dest="use_async", action="store_true")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


def _build_async(builder: AtlasBuilder, fps: float) -> SpriteSheet:
    clock = FrameClock(ClockSettings(interval_ms=1000.0 / fps))

    def on_progress(event: BuildProgress) -> None:
        logger.info("progress %5.1f%% (%d/%d)", event.progress * 100,
                    event.drawn, event.total)

    builder.events.subscribe(BuildProgress, on_progress)
    future = builder.build_async(clock)
    clock.start()
    clock.run(lambda: not future.done())
    clock.stop()

    logger.info(
        "measured %.1f fps, %.2fms per tick",
        clock.get_measured_fps(),
        clock.get_measured_tick_time(),
    )
    return future.result()


def _write(sheet: SpriteSheet, out: Path) -> None:
    out.parent.mkdir(parents=True, exist_ok=True)
    paths = []
    for image in sheet.images:
        path = out.with_name(f"{out.name}_{image.index}.png")
        image.to_image().save(path)
        paths.append(path.name)
        logger.info("wrote %s (%dx%d)", path, image.width, image.height)

    meta = out.with_name(f"{out.name}.json")
    meta.write_text(json.dumps(sheet.to_dict(paths), indent=2))
    logger.info("wrote %s", meta)


def main(argv: Optional[List[str]] = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(message)s",
    )

    try:
        settings = AtlasSettings(
            max_width=args.max_size,
            max_height=args.max_size,
            scale=args.scale,
            padding=args.padding,
            time_slice=args.time_slice,
            power_of_two=not args.exact_size,
        )
        builder = AtlasBuilder(settings)

        files = sorted(args.src.glob("*.png"))
        for path in files:
            if builder.add_frame(ImageSource.open(path)) is None:
                logger.warning("skipped %s", path.name)
        logger.info("queued %d frame(s)", builder.pending_count)

        if args.use_async:
            sheet = _build_async(builder, args.fps)
        else:
            sheet = builder.build()
    except KestrelError as e:
        logger.error("%s", e)
        return 1

    _write(sheet, args.out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
