"""End-to-end tiled upscaling jobs."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Union

from .buffer import PixelBuffer
from .config import UpscalerConfig
from .errors import UnsupportedFactor, UpscaleCancelled, UpscaleError
from .inference import InferenceAdapter
from .models import BackendId, ModelId
from .registry import BackendResolver, ModelRegistry
from .tiling import composite_tile, extract_tile, plan_tiles

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpscalingOptions:
    model: ModelId = ModelId.GENERAL_FAST
    backend: BackendId = BackendId.AUTO
    factor: int = 4

    def __post_init__(self) -> None:
        object.__setattr__(self, "model", ModelId.parse(self.model))
        object.__setattr__(self, "backend", BackendId.parse(self.backend))
        if isinstance(self.factor, bool) or not isinstance(self.factor, int) or self.factor <= 0:
            raise ValueError(f"Upscale factor must be a positive integer, got {self.factor!r}.")


@dataclass(frozen=True)
class Progress:
    percent: float
    message: str


@dataclass(frozen=True)
class Done:
    output: PixelBuffer
    message: str = "Upscaling complete!"
    backend: Optional[str] = None


@dataclass(frozen=True)
class Failed:
    message: str
    error: Optional[BaseException] = None


UpscalingEvent = Union[Progress, Done, Failed]
EventSink = Callable[[UpscalingEvent], None]


class JobState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    PLANNING = "planning"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class UpscaleOrchestrator:
    """Runs one job at a time: resolve, plan, process tiles, hand over output.

    Tiles are processed strictly one after another in row-major order, so the
    ``i``-th tile progress event always reports ``100 * i / n``. A job ends
    with exactly one :class:`Done` or :class:`Failed` event and never hands
    out a partially stitched image.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        *,
        resolver: Optional[BackendResolver] = None,
        adapter: Optional[InferenceAdapter] = None,
        config: Optional[UpscalerConfig] = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolver or BackendResolver()
        self._adapter = adapter or InferenceAdapter()
        self._config = config or UpscalerConfig()
        self.state = JobState.IDLE

    def _transition(self, state: JobState) -> None:
        logger.debug("Job state %s -> %s", self.state.value, state.value)
        self.state = state

    def run(
        self,
        options: UpscalingOptions,
        source: PixelBuffer,
        emit: EventSink,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> UpscalingEvent:
        """Upscale ``source`` and report through ``emit``; returns the terminal event."""

        self._transition(JobState.RESOLVING)
        try:
            output, device = self._execute(options, source, emit, cancel)
        except UpscaleError as exc:
            terminal: UpscalingEvent = Failed(str(exc), exc)
        except Exception as exc:
            logger.exception("Unexpected failure while upscaling")
            terminal = Failed(f"Upscaling failed: {exc}", exc)
        else:
            self._transition(JobState.FINALIZING)
            terminal = Done(output, backend=device)

        if isinstance(terminal, Done):
            self._transition(JobState.DONE)
            logger.info("Upscaling finished: %s×%s", terminal.output.width, terminal.output.height)
        else:
            self._transition(JobState.FAILED)
            logger.warning("Upscaling failed: %s", terminal.message)
        emit(terminal)
        return terminal

    def _execute(
        self,
        options: UpscalingOptions,
        source: PixelBuffer,
        emit: EventSink,
        cancel: Optional[threading.Event],
    ) -> Tuple[PixelBuffer, str]:
        backend = self._resolver.resolve(options.backend)
        model = self._registry.resolve(
            options.model,
            backend,
            notify=lambda message: emit(Progress(0.0, message)),
        )

        self._transition(JobState.PLANNING)
        factor = options.factor
        if factor != model.scale:
            raise UnsupportedFactor(
                f"Model {model.model_id.value} upscales by {model.scale}x; requested factor {factor} is not supported."
            )
        tile_size = self._config.tile_size or model.input_size
        tiles = plan_tiles(source.width, source.height, tile_size, self._config.min_overlap, factor)
        total = len(tiles)
        logger.info(
            "Upscaling %s×%s with %s on %s: %s tile(s) of %spx, factor %s",
            source.width,
            source.height,
            model.model_id.value,
            backend.device,
            total,
            tile_size,
            factor,
        )

        self._transition(JobState.PROCESSING)
        output = PixelBuffer.blank(source.width * factor, source.height * factor)
        for index, tile in enumerate(tiles, start=1):
            if cancel is not None and cancel.is_set():
                raise UpscaleCancelled("Upscaling cancelled.")
            crop = extract_tile(source, tile.src_rect)
            scaled = self._adapter.run(model, crop, factor)
            composite_tile(output, scaled, tile.trim_rect, tile.dest_origin)
            percent = 100 * index / total
            logger.debug("Tile %s/%s (col=%s, row=%s) done", index, total, tile.col, tile.row)
            emit(Progress(percent, f"Processing {percent:.2f}%"))
        return output, backend.device
