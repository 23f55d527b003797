"""Running a single tile through a model."""

from __future__ import annotations

import logging

import numpy as np

from .buffer import PixelBuffer
from .errors import InferenceError
from .registry import ModelHandle

logger = logging.getLogger(__name__)


class InferenceAdapter:
    """Converts pixel buffers to tensors and back around a model call.

    Input alpha is ignored; output pixels are fully opaque. Every tensor
    created for a tile is released before :meth:`run` returns, whether the
    model call succeeded or not.
    """

    def __init__(self, torch_module=None) -> None:
        self._torch = torch_module

    def _torch_module(self):
        if self._torch is None:
            try:
                import torch  # type: ignore
            except ImportError as exc:  # pragma: no cover - optional dependency guard
                raise InferenceError("PyTorch is required for AI upscaling.") from exc
            self._torch = torch
        return self._torch

    def run(self, model: ModelHandle, tile: PixelBuffer, factor: int) -> PixelBuffer:
        torch = self._torch_module()
        expected = (tile.height * factor, tile.width * factor)
        logger.debug("Running %s on a %s×%s tile (device=%s)", model.model_id.value, tile.width, tile.height, model.device)

        rgb = tile.as_array()[:, :, :3]
        input_tensor = None
        output_tensor = None
        try:
            with torch.inference_mode():
                input_tensor = (
                    torch.from_numpy(np.ascontiguousarray(rgb.transpose(2, 0, 1)))
                    .to(model.device)
                    .float()
                    .div_(255.0)
                    .unsqueeze(0)
                )
                output_tensor = model.module(input_tensor)
                result = self._to_array(output_tensor, expected)
        except InferenceError:
            raise
        except Exception as exc:
            raise InferenceError(f"Model inference failed: {exc}") from exc
        finally:
            del input_tensor, output_tensor
            self._release(model.device)

        height, width = expected
        rgba = np.empty((height, width, 4), dtype=np.uint8)
        rgba[:, :, :3] = result
        rgba[:, :, 3] = 255
        return PixelBuffer.from_array(rgba)

    @staticmethod
    def _to_array(output_tensor, expected) -> np.ndarray:
        shape = tuple(output_tensor.shape)
        if len(shape) != 4 or shape[0] != 1 or shape[1] != 3 or shape[2:] != expected:
            raise InferenceError(
                f"Model returned shape {shape}; expected (1, 3, {expected[0]}, {expected[1]})."
            )
        raw = output_tensor[0].detach().float()
        if not bool(raw.isfinite().all()):
            raise InferenceError("Model produced non-finite values.")
        array = raw.clamp_(0.0, 1.0).mul_(255.0).round_().cpu().numpy()
        return array.transpose(1, 2, 0).astype(np.uint8)

    def _release(self, device: str) -> None:
        if device == "cuda":
            cuda = getattr(self._torch, "cuda", None)
            if cuda is not None and cuda.is_available():
                cuda.empty_cache()
