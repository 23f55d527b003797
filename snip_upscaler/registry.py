"""Backend probing and model loading with a persistent weight cache."""

from __future__ import annotations

import io
import logging
import os
import tempfile
import threading
import urllib.error
import urllib.request
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ModelLoadError, UnsupportedBackend
from .models import MODEL_SPECS, BackendId, ModelId, ModelSpec

logger = logging.getLogger(__name__)

DOWNLOAD_MESSAGE = "Downloading model..."

Fetcher = Callable[[str], bytes]
Builder = Callable[[ModelSpec, bytes, str], Any]
Notify = Callable[[str], None]


def _ensure_torchvision_functional_tensor() -> None:
    """Alias ``torchvision.transforms.functional_tensor`` for BasicSR.

    Recent torchvision releases renamed the module to ``_functional_tensor``
    while BasicSR still imports the old public path.
    """
    import importlib
    import sys
    import types

    target = "torchvision.transforms.functional_tensor"
    if target in sys.modules:
        return
    try:
        source = importlib.import_module("torchvision.transforms._functional_tensor")
    except ModuleNotFoundError:
        return

    alias = types.ModuleType(target)
    for name in dir(source):
        if name.startswith("__"):
            continue
        setattr(alias, name, getattr(source, name))
    sys.modules[target] = alias


def _import_torch():
    try:
        import torch  # type: ignore
    except ImportError as exc:
        raise UnsupportedBackend(
            "PyTorch is not installed; install the project dependencies to enable AI upscaling."
        ) from exc
    return torch


@dataclass(frozen=True)
class BackendHandle:
    id: BackendId
    device: str


class BackendResolver:
    """Maps a :class:`BackendId` onto a torch device available right now."""

    def __init__(self, torch_module=None) -> None:
        self._torch = torch_module

    def _torch_module(self):
        if self._torch is None:
            self._torch = _import_torch()
        return self._torch

    def available(self) -> List[BackendId]:
        torch = self._torch_module()
        found: List[BackendId] = []
        cuda = getattr(torch, "cuda", None)
        if cuda is not None and cuda.is_available():
            found.append(BackendId.CUDA)
        mps = getattr(getattr(torch, "backends", None), "mps", None)
        if mps is not None and mps.is_available():
            found.append(BackendId.MPS)
        found.append(BackendId.CPU)
        return found

    def resolve(self, backend_id: BackendId | str) -> BackendHandle:
        try:
            requested = BackendId.parse(backend_id)
        except ValueError as exc:
            raise UnsupportedBackend(str(exc)) from exc

        available = self.available()
        logger.debug("Available backends: %s", [backend.value for backend in available])
        if requested is BackendId.AUTO:
            chosen = available[0]
        elif requested in available:
            chosen = requested
        else:
            raise UnsupportedBackend(f"{requested.value} is not supported in this environment.")

        logger.info("Using %s backend (requested %s)", chosen.value, requested.value)
        return BackendHandle(id=chosen, device=chosen.value)


@dataclass
class ModelHandle:
    """A loaded model ready for inference on ``device``."""

    model_id: ModelId
    spec: ModelSpec
    module: Any
    device: str

    @property
    def scale(self) -> int:
        return self.spec.scale

    @property
    def input_size(self) -> int:
        return self.spec.input_size


def fetch_url(url: str, timeout: float = 60.0) -> bytes:
    request = urllib.request.Request(
        url,
        headers={"User-Agent": "snip-upscaler/1.0"},
    )
    with urllib.request.urlopen(request, timeout=timeout) as response:
        return response.read()


def _extract_state_dict(payload: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    """Heuristic extraction of the actual model weights from mixed payloads."""

    if any(isinstance(key, str) and ("." in key or key.endswith(("weight", "bias"))) for key in payload):
        return payload

    for key in ("params_ema", "ema", "params", "generator", "state_dict", "model"):
        candidate = payload.get(key)
        if isinstance(candidate, Mapping):
            extracted = _extract_state_dict(candidate)
            if extracted is not None:
                return extracted

    return None


def build_model(spec: ModelSpec, payload: bytes, device: str):
    """Instantiate ``spec``'s architecture and load the checkpoint ``payload``."""

    torch = _import_torch()
    try:
        _ensure_torchvision_functional_tensor()
        from basicsr.archs.rrdbnet_arch import RRDBNet  # type: ignore
        from realesrgan.archs.srvgg_arch import SRVGGNetCompact  # type: ignore
    except ImportError as exc:
        raise ModelLoadError(
            "Real-ESRGAN dependencies are not available. Install realesrgan and basicsr."
        ) from exc

    arch = spec.arch.lower()
    if arch == "rrdbnet":
        module = RRDBNet(**spec.arch_args)
    elif arch == "srvgg":
        module = SRVGGNetCompact(**spec.arch_args)
    else:
        raise ModelLoadError(f"Unsupported architecture '{spec.arch}' for model {spec.id.value}.")

    loadnet = torch.load(io.BytesIO(payload), map_location="cpu", weights_only=True)
    state_dict = _extract_state_dict(loadnet) if isinstance(loadnet, Mapping) else None
    if state_dict is None:
        raise ModelLoadError(f"Checkpoint for {spec.id.value} does not contain model weights.")
    module.load_state_dict(dict(state_dict), strict=True)
    module.eval()
    return module.to(device)


class ModelRegistry:
    """Process-wide cache of loaded models.

    Lookups go memory → ``cache_dir`` → network. Downloaded checkpoints are
    written back to ``cache_dir`` on a background thread; a failed write is
    logged and otherwise ignored. At most ``max_entries`` models stay loaded,
    evicting the least recently used.
    """

    def __init__(
        self,
        cache_dir: Path | str,
        *,
        specs: Optional[Dict[ModelId, ModelSpec]] = None,
        fetcher: Optional[Fetcher] = None,
        builder: Optional[Builder] = None,
        max_entries: int = 4,
        download_timeout: float = 60.0,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        self._cache_dir = Path(cache_dir).expanduser()
        self._specs = dict(MODEL_SPECS if specs is None else specs)
        self._fetcher: Fetcher = fetcher or (lambda url: fetch_url(url, timeout=download_timeout))
        self._builder: Builder = builder or build_model
        self._max_entries = max_entries
        self._loaded: "OrderedDict[Tuple[ModelId, str], ModelHandle]" = OrderedDict()
        self._lock = threading.Lock()
        self._pending_writes: List[threading.Thread] = []

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def cache_path(self, model_id: ModelId | str) -> Path:
        return self._cache_dir / f"{ModelId.parse(model_id).value}.pth"

    def loaded(self) -> List[Tuple[ModelId, str]]:
        with self._lock:
            return list(self._loaded)

    def evict(self, model_id: ModelId | str) -> int:
        target = ModelId.parse(model_id)
        with self._lock:
            keys = [key for key in self._loaded if key[0] is target]
            for key in keys:
                del self._loaded[key]
        if keys:
            logger.debug("Evicted %s loaded instance(s) of %s", len(keys), target.value)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._loaded.clear()

    def resolve(
        self,
        model_id: ModelId | str,
        backend: BackendHandle,
        notify: Optional[Notify] = None,
    ) -> ModelHandle:
        try:
            key_id = ModelId.parse(model_id)
            spec = self._specs[key_id]
        except (ValueError, KeyError) as exc:
            raise ModelLoadError(f"No model registered for '{model_id}'.") from exc

        key = (key_id, backend.device)
        with self._lock:
            handle = self._loaded.get(key)
            if handle is not None:
                self._loaded.move_to_end(key)
                logger.debug("Model %s already loaded on %s", key_id.value, backend.device)
                return handle

        module = self._load_cached(spec, backend.device)
        if module is None:
            if notify is not None:
                notify(DOWNLOAD_MESSAGE)
            module = self._load_remote(spec, backend.device)

        handle = ModelHandle(model_id=key_id, spec=spec, module=module, device=backend.device)
        with self._lock:
            self._loaded[key] = handle
            while len(self._loaded) > self._max_entries:
                evicted, _ = self._loaded.popitem(last=False)
                logger.debug("Evicted least recently used model %s on %s", evicted[0].value, evicted[1])
        return handle

    def _load_cached(self, spec: ModelSpec, device: str):
        path = self.cache_path(spec.id)
        if not path.exists():
            logger.debug("No cached weights for %s at %s", spec.id.value, path)
            return None
        try:
            module = self._builder(spec, path.read_bytes(), device)
        except Exception as exc:
            logger.warning("Failed to load cached model %s from %s: %s", spec.id.value, path, exc)
            return None
        logger.info("Loaded %s from cache", spec.id.value)
        return module

    def _load_remote(self, spec: ModelSpec, device: str):
        errors: List[str] = []
        for url in spec.urls:
            try:
                logger.info("Downloading %s from %s", spec.id.value, url)
                payload = self._fetcher(url)
                module = self._builder(spec, payload, device)
            except Exception as exc:
                errors.append(f"{url}: {exc}")
                logger.warning("Failed to load %s from %s: %s", spec.id.value, url, exc)
                continue
            self._persist_async(self.cache_path(spec.id), payload)
            return module

        if not errors:
            errors.append("no download locations configured")
        raise ModelLoadError(
            f"Failed to load or download model {spec.id.value}. Tried:\n" + "\n".join(errors)
        )

    def _persist_async(self, path: Path, payload: bytes) -> None:
        writer = threading.Thread(
            target=self._persist,
            args=(path, payload),
            name=f"model-cache-{path.stem}",
            daemon=True,
        )
        with self._lock:
            self._pending_writes = [thread for thread in self._pending_writes if thread.is_alive()]
            self._pending_writes.append(writer)
        writer.start()

    @staticmethod
    def _persist(path: Path, payload: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                os.replace(temp_name, path)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.warning("Could not write model cache %s: %s", path, exc)
            return
        logger.info("Saved model to cache at %s", path)

    def wait_for_pending_writes(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            pending = list(self._pending_writes)
        for thread in pending:
            thread.join(timeout)
