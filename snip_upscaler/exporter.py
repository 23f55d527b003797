"""Saving upscaled snippets together with a description of how they were made."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from PIL import Image, PngImagePlugin

from .pipeline import UpscalingOptions


def build_metadata(
    source_path: Optional[Path],
    source_size: Tuple[int, int],
    options: UpscalingOptions,
    *,
    backend: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Construct a metadata payload describing the export."""

    payload: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "application": _application_info(),
        "source": {
            "path": str(source_path) if source_path is not None else None,
            "width": source_size[0],
            "height": source_size[1],
        },
        "upscale": {
            "model": options.model.value,
            "backend": backend or options.backend.value,
            "factor": options.factor,
        },
    }
    if extra:
        payload.update(extra)
    return payload


def save_image_with_metadata(image: Image.Image, destination: Path, metadata_payload: Dict[str, Any]) -> None:
    """Persist ``image`` to ``destination`` along with a JSON metadata sidecar."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    png_info = PngImagePlugin.PngInfo()
    png_info.add_text("snip_upscaler_metadata", json.dumps(metadata_payload, ensure_ascii=False))
    image.save(destination, format="PNG", pnginfo=png_info)

    sidecar_path = destination.with_suffix(".json")
    sidecar_path.write_text(json.dumps(metadata_payload, ensure_ascii=False, indent=2), encoding="utf-8")


def _application_info() -> Dict[str, str]:
    try:
        version = metadata.version("snip-upscaler")
    except metadata.PackageNotFoundError:  # pragma: no cover - running from a source checkout
        version = "unknown"
    return {
        "name": "Snip Upscaler",
        "version": version,
    }
