import dataclasses
from typing import List, Optional

import numpy as np  # type: ignore
import pytest  # type: ignore

from snip_upscaler.buffer import PixelBuffer
from snip_upscaler.config import UpscalerConfig
from snip_upscaler.errors import InferenceError, ModelLoadError, UnsupportedBackend
from snip_upscaler.models import MODEL_SPECS, BackendId, ModelId
from snip_upscaler.pipeline import UpscaleOrchestrator
from snip_upscaler.registry import DOWNLOAD_MESSAGE, BackendHandle, ModelHandle


class FakeResolver:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[str] = []

    def resolve(self, backend_id):
        self.calls.append(BackendId.parse(backend_id).value)
        if self.fail:
            raise UnsupportedBackend("cuda is not supported in this environment.")
        return BackendHandle(BackendId.CPU, "cpu")


class FakeRegistry:
    def __init__(self, fail: bool = False, download: bool = False, scale: int = 2) -> None:
        self.fail = fail
        self.download = download
        self.scale = scale
        self.calls: List[str] = []

    def resolve(self, model_id, backend, notify=None):
        self.calls.append(ModelId.parse(model_id).value)
        if self.download and notify is not None:
            notify(DOWNLOAD_MESSAGE)
        if self.fail:
            raise ModelLoadError("Failed to load or download model general_fast.")
        spec = dataclasses.replace(MODEL_SPECS[ModelId.parse(model_id)], scale=self.scale)
        return ModelHandle(model_id=spec.id, spec=spec, module=None, device=backend.device)


class NearestAdapter:
    """Stand-in model: nearest-neighbour upscale, optionally failing on one call."""

    def __init__(self, fail_on: Optional[int] = None) -> None:
        self.fail_on = fail_on
        self.calls = 0

    def run(self, model, tile: PixelBuffer, factor: int) -> PixelBuffer:
        self.calls += 1
        if self.fail_on is not None and self.calls == self.fail_on:
            raise InferenceError("Model inference failed: out of memory")
        array = tile.as_array()
        return PixelBuffer.from_array(np.repeat(np.repeat(array, factor, axis=0), factor, axis=1))


def random_buffer(width: int, height: int, seed: int = 0) -> PixelBuffer:
    rng = np.random.default_rng(seed)
    return PixelBuffer.from_array(rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8))


@pytest.fixture
def make_orchestrator():
    def factory(
        *,
        resolver: Optional[FakeResolver] = None,
        registry: Optional[FakeRegistry] = None,
        adapter: Optional[NearestAdapter] = None,
        tile_size: int = 16,
        min_overlap: int = 4,
    ) -> UpscaleOrchestrator:
        return UpscaleOrchestrator(
            registry or FakeRegistry(),
            resolver=resolver or FakeResolver(),
            adapter=adapter or NearestAdapter(),
            config=UpscalerConfig(tile_size=tile_size, min_overlap=min_overlap),
        )

    return factory
