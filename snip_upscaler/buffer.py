"""RGBA pixel buffers shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from PIL import Image

Rect = Tuple[int, int, int, int]

CHANNELS = 4


@dataclass(eq=False)
class PixelBuffer:
    """A ``width`` × ``height`` RGBA8 image stored row-major in ``data``.

    The buffer is owned by whichever stage is processing it. Handing it on
    (for example inside a ``Done`` event) transfers ownership; the sender must
    not touch ``data`` afterwards.
    """

    width: int
    height: int
    data: bytearray

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(f"Invalid buffer size {self.width}×{self.height}.")
        if not isinstance(self.data, bytearray):
            self.data = bytearray(self.data)
        expected = self.width * self.height * CHANNELS
        if len(self.data) != expected:
            raise ValueError(
                f"Pixel data for a {self.width}×{self.height} RGBA buffer must be "
                f"{expected} bytes, got {len(self.data)}."
            )

    @classmethod
    def blank(cls, width: int, height: int) -> "PixelBuffer":
        return cls(width, height, bytearray(width * height * CHANNELS))

    @classmethod
    def from_array(cls, array: np.ndarray) -> "PixelBuffer":
        """Build a buffer from an ``(h, w, 4)`` uint8 array (copied)."""

        if array.ndim != 3 or array.shape[2] != CHANNELS:
            raise ValueError(f"Expected an (h, w, 4) array, got shape {array.shape}.")
        height, width = array.shape[:2]
        return cls(width, height, bytearray(np.ascontiguousarray(array, dtype=np.uint8).tobytes()))

    @classmethod
    def from_image(cls, image: Image.Image) -> "PixelBuffer":
        rgba = image.convert("RGBA") if image.mode != "RGBA" else image
        return cls(rgba.width, rgba.height, bytearray(rgba.tobytes("raw", "RGBA")))

    def to_image(self) -> Image.Image:
        return Image.frombytes("RGBA", (self.width, self.height), bytes(self.data))

    @property
    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    def as_array(self) -> np.ndarray:
        """Return a writable ``(h, w, 4)`` view onto ``data``."""

        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, CHANNELS)

    def copy_from(
        self,
        source: "PixelBuffer",
        src_rect: Rect,
        dest_xy: Tuple[int, int] = (0, 0),
    ) -> None:
        """Copy ``source[src_rect]`` into this buffer at ``dest_xy``.

        The copied region is clipped against both buffers, so pixels that fall
        outside either one are skipped rather than wrapped.
        """

        sx, sy, w, h = src_rect
        dx, dy = dest_xy

        # Clip against the source.
        if sx < 0:
            dx -= sx
            w += sx
            sx = 0
        if sy < 0:
            dy -= sy
            h += sy
            sy = 0
        w = min(w, source.width - sx)
        h = min(h, source.height - sy)

        # Clip against the destination.
        if dx < 0:
            sx -= dx
            w += dx
            dx = 0
        if dy < 0:
            sy -= dy
            h += dy
            dy = 0
        w = min(w, self.width - dx)
        h = min(h, self.height - dy)

        if w <= 0 or h <= 0:
            return
        self.as_array()[dy : dy + h, dx : dx + w] = source.as_array()[sy : sy + h, sx : sx + w]
