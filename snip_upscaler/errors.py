"""Exception hierarchy for the tiled upscaling pipeline."""

from __future__ import annotations


class UpscaleError(RuntimeError):
    """Base class for every failure that terminates an upscale job."""


class InvalidDimension(UpscaleError, ValueError):
    """Raised when tile planning receives a dimension it cannot tile."""


class UnsupportedBackend(UpscaleError):
    """Raised when the requested compute backend is unavailable."""


class ModelLoadError(UpscaleError):
    """Raised when a model could be loaded neither from cache nor network."""


class InferenceError(UpscaleError):
    """Raised when running the model on a single tile fails."""


class UpscaleCancelled(UpscaleError):
    """Raised when a job is cancelled between tiles."""


class UnsupportedFactor(UpscaleError, ValueError):
    """Raised when the requested factor differs from the model's native scale."""
