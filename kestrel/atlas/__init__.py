# kestrel/atlas/__init__.py
from kestrel.atlas.builder import (
    AtlasBuilder,
    BuildComplete,
    BuildFailed,
    BuildProgress,
)
from kestrel.atlas.packer import PackResult, Placement, ShelfPacker, pack
from kestrel.atlas.sheet import Animation, AtlasImage, FrameLocation, SpriteSheet
from kestrel.atlas.sources import FrameSetup, FrameSource, ImageSource

__all__ = [
    "AtlasBuilder",
    "BuildProgress",
    "BuildComplete",
    "BuildFailed",
    "pack",
    "PackResult",
    "Placement",
    "ShelfPacker",
    "SpriteSheet",
    "AtlasImage",
    "FrameLocation",
    "Animation",
    "FrameSetup",
    "FrameSource",
    "ImageSource",
]
