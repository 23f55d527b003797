"""Tile-based super-resolution upscaling for exported PDF snippets."""

from .buffer import PixelBuffer
from .errors import (
    InferenceError,
    InvalidDimension,
    ModelLoadError,
    UnsupportedBackend,
    UnsupportedFactor,
    UpscaleCancelled,
    UpscaleError,
)
from .models import BackendId, ModelId, available_models
from .pipeline import Done, Failed, Progress, UpscaleOrchestrator, UpscalingOptions
from .tiling import AxisPlan, TileSpec, plan_axis, plan_tiles

__all__ = [
    "AxisPlan",
    "BackendId",
    "Done",
    "Failed",
    "InferenceError",
    "InvalidDimension",
    "ModelId",
    "ModelLoadError",
    "PixelBuffer",
    "Progress",
    "TileSpec",
    "UnsupportedBackend",
    "UnsupportedFactor",
    "UpscaleCancelled",
    "UpscaleError",
    "UpscaleOrchestrator",
    "UpscalingOptions",
    "available_models",
    "plan_axis",
    "plan_tiles",
]
