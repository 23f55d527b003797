"""Runtime configuration for the upscaler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

CACHE_DIR_ENV = "SNIP_UPSCALER_CACHE_DIR"


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "snip_upscaler" / "models"


@dataclass
class UpscalerConfig:
    """Tiling and model-cache settings shared by the worker and CLI."""

    cache_dir: Path = field(default_factory=_default_cache_dir)
    tile_size: Optional[int] = None
    min_overlap: int = 12
    max_cached_models: int = 4
    download_timeout: float = 60.0

    def resolved_cache_dir(self) -> Path:
        return Path(self.cache_dir).expanduser().resolve()

    def to_dict(self) -> Dict[str, object]:
        return {
            "cache_dir": str(self.cache_dir),
            "tile_size": self.tile_size,
            "min_overlap": self.min_overlap,
            "max_cached_models": self.max_cached_models,
            "download_timeout": self.download_timeout,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object] | None) -> "UpscalerConfig":
        if not data:
            return cls()
        defaults = cls()
        tile_size = data.get("tile_size")
        return cls(
            cache_dir=Path(str(data.get("cache_dir") or defaults.cache_dir)),
            tile_size=int(tile_size) if tile_size is not None else None,
            min_overlap=int(data.get("min_overlap", defaults.min_overlap)),
            max_cached_models=int(data.get("max_cached_models", defaults.max_cached_models)),
            download_timeout=float(data.get("download_timeout", defaults.download_timeout)),
        )

    @classmethod
    def from_env(cls) -> "UpscalerConfig":
        config = cls()
        override = os.environ.get(CACHE_DIR_ENV)
        if override:
            config.cache_dir = Path(override)
        return config
