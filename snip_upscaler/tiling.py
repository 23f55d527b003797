"""Tile grid planning and tile extraction/compositing.

A large image is covered by fixed-size tiles that overlap by at least
``min_overlap`` pixels so the model sees context near every tile edge. Each
overlap is split between the two neighbouring tiles; the split amounts are
trimmed away when the tile outputs are stitched back together, so every output
pixel comes from exactly one tile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from .buffer import PixelBuffer, Rect
from .errors import InvalidDimension


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AxisPlan:
    """Tile layout along one axis."""

    dimension: int
    tile_size: int
    origins: Tuple[int, ...]
    pad_left: Tuple[int, ...]
    pad_right: Tuple[int, ...]

    @property
    def count(self) -> int:
        return len(self.origins)

    def overlap(self, index: int) -> int:
        """Overlap in pixels between tile ``index`` and tile ``index + 1``."""

        return self.origins[index] + self.tile_size - self.origins[index + 1]

    def span(self, index: int) -> Tuple[int, int]:
        """Half-open interval of the image that tile ``index`` contributes."""

        start = self.origins[index] + self.pad_left[index]
        end = min(self.origins[index] + self.tile_size - self.pad_right[index], self.dimension)
        return start, end

    def spans(self) -> Iterator[Tuple[int, int]]:
        for index in range(self.count):
            yield self.span(index)


def _tile_count(dimension: int, tile_size: int, min_overlap: int) -> int:
    if tile_size >= dimension:
        return 1
    count = 2
    while tile_size * count - dimension < min_overlap * (count - 1):
        count += 1
    return count


def plan_axis(dimension: int, tile_size: int, min_overlap: int) -> AxisPlan:
    """Plan the smallest set of tiles covering ``[0, dimension)``.

    Consecutive tiles overlap by at least ``min_overlap``. The total overlap is
    spread as evenly as integer offsets allow, with the first seams taking one
    extra pixel when it does not divide evenly.
    """

    if dimension <= 0:
        raise InvalidDimension(f"Dimension must be positive, got {dimension}.")
    if tile_size <= 0:
        raise InvalidDimension(f"Tile size must be positive, got {tile_size}.")
    if min_overlap < 0:
        raise InvalidDimension(f"Minimum overlap must not be negative, got {min_overlap}.")
    if dimension > tile_size and min_overlap >= tile_size:
        raise InvalidDimension(
            f"Minimum overlap {min_overlap} must be smaller than the tile size {tile_size} "
            f"to tile a dimension of {dimension}."
        )

    count = _tile_count(dimension, tile_size, min_overlap)
    if count == 1:
        return AxisPlan(dimension, tile_size, (0,), (0,), (0,))

    seams = count - 1
    total_lap = tile_size * count - dimension
    base_lap = total_lap // seams
    extra_lap = total_lap - base_lap * seams

    origins: List[int] = [0]
    for index in range(1, count):
        lap = base_lap + 1 if index <= extra_lap else base_lap
        origins.append(origins[-1] + tile_size - lap)

    pad_left = [0] * count
    pad_right = [0] * count
    for index in range(seams):
        overlap = origins[index] + tile_size - origins[index + 1]
        pad_left[index + 1] = overlap // 2
        pad_right[index] = overlap - pad_left[index + 1]

    return AxisPlan(dimension, tile_size, tuple(origins), tuple(pad_left), tuple(pad_right))


@dataclass(frozen=True)
class TileSpec:
    """A single tile of the grid.

    ``src_rect`` is in source coordinates. ``trim_rect`` (inside the tile's
    model output) and ``dest_rect`` (inside the job output) are already scaled
    by the upscale factor.
    """

    col: int
    row: int
    src_rect: Rect
    trim_rect: Rect
    dest_rect: Rect

    @property
    def dest_origin(self) -> Tuple[int, int]:
        return self.dest_rect[0], self.dest_rect[1]


def plan_tiles(
    width: int,
    height: int,
    tile_size: int,
    min_overlap: int,
    factor: int = 1,
) -> List[TileSpec]:
    """Cross the width and height plans into a row-major list of tiles."""

    x_plan = plan_axis(width, tile_size, min_overlap)
    y_plan = plan_axis(height, tile_size, min_overlap)
    logger.debug(
        "Planned %sx%s tiles for %s×%s (tile=%s, min_overlap=%s)",
        x_plan.count,
        y_plan.count,
        width,
        height,
        tile_size,
        min_overlap,
    )

    tiles: List[TileSpec] = []
    for row in range(y_plan.count):
        y0, y1 = y_plan.span(row)
        for col in range(x_plan.count):
            x0, x1 = x_plan.span(col)
            tiles.append(
                TileSpec(
                    col=col,
                    row=row,
                    src_rect=(x_plan.origins[col], y_plan.origins[row], tile_size, tile_size),
                    trim_rect=(
                        x_plan.pad_left[col] * factor,
                        y_plan.pad_left[row] * factor,
                        (x1 - x0) * factor,
                        (y1 - y0) * factor,
                    ),
                    dest_rect=(x0 * factor, y0 * factor, (x1 - x0) * factor, (y1 - y0) * factor),
                )
            )
    return tiles


def extract_tile(source: PixelBuffer, rect: Rect) -> PixelBuffer:
    """Copy ``rect`` out of ``source`` into a fresh buffer of the rect's size.

    Pixels of ``rect`` that fall outside ``source`` stay transparent black.
    """

    x, y, width, height = rect
    tile = PixelBuffer.blank(width, height)
    tile.copy_from(source, (x, y, width, height), (0, 0))
    return tile


def composite_tile(
    dest: PixelBuffer,
    tile_output: PixelBuffer,
    trim_rect: Rect,
    dest_origin: Tuple[int, int],
) -> None:
    """Write the trimmed interior of ``tile_output`` into ``dest`` in place."""

    dest.copy_from(tile_output, trim_rect, dest_origin)
