"""Catalogue of the super-resolution models and compute backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class ModelId(str, Enum):
    """Model identifiers accepted by the worker protocol."""

    ANIME_FAST = "anime_fast"
    ANIME_PLUS = "anime_plus"
    GENERAL = "general"
    GENERAL_PLUS = "general_plus"
    GENERAL_FAST = "general_fast"

    @classmethod
    def parse(cls, value: "ModelId | str") -> "ModelId":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            known = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown model '{value}'. Known models: {known}.") from None


class BackendId(str, Enum):
    """Compute backends a job may request."""

    AUTO = "auto"
    CUDA = "cuda"
    MPS = "mps"
    CPU = "cpu"

    @classmethod
    def parse(cls, value: "BackendId | str") -> "BackendId":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            known = ", ".join(member.value for member in cls)
            raise ValueError(f"Unknown backend '{value}'. Known backends: {known}.") from None


@dataclass(frozen=True)
class ModelSpec:
    id: ModelId
    label: str
    description: str
    urls: Tuple[str, ...]
    arch: str
    arch_args: Dict[str, object] = field(default_factory=dict)
    scale: int = 4
    input_size: int = 64


MODEL_SPECS: Dict[ModelId, ModelSpec] = {
    ModelId.ANIME_FAST: ModelSpec(
        id=ModelId.ANIME_FAST,
        label="Anime 4x Fast",
        description="Optimized for anime and cartoon images. Fast processing.",
        urls=(
            "https://github.com/xinntao/Real-ESRGAN/releases/download/v0.2.5.0/realesr-animevideov3.pth",
        ),
        arch="srvgg",
        arch_args=dict(num_in_ch=3, num_out_ch=3, num_feat=64, num_conv=16, upscale=4, act_type="prelu"),
    ),
    ModelId.ANIME_PLUS: ModelSpec(
        id=ModelId.ANIME_PLUS,
        label="Anime 4x Plus",
        description="Enhanced anime upscaling with better details.",
        urls=(
            "https://github.com/xinntao/Real-ESRGAN/releases/download/v0.2.2.4/RealESRGAN_x4plus_anime_6B.pth",
        ),
        arch="rrdbnet",
        arch_args=dict(num_in_ch=3, num_out_ch=3, num_feat=64, num_block=6, num_grow_ch=32, scale=4),
    ),
    ModelId.GENERAL: ModelSpec(
        id=ModelId.GENERAL,
        label="General Purpose",
        description="Good balance for mixed content types. Very fast processing.",
        urls=(
            "https://github.com/xinntao/Real-ESRGAN/releases/download/v0.2.5.0/realesr-general-wdn-x4v3.pth",
            "https://huggingface.co/xinntao/Real-ESRGAN/resolve/main/realesr-general-wdn-x4v3.pth",
        ),
        arch="srvgg",
        arch_args=dict(num_in_ch=3, num_out_ch=3, num_feat=64, num_conv=32, upscale=4, act_type="prelu"),
    ),
    ModelId.GENERAL_PLUS: ModelSpec(
        id=ModelId.GENERAL_PLUS,
        label="Real-ESRGAN 4x Plus",
        description="High quality for real photos. Slower but better results.",
        urls=(
            "https://github.com/xinntao/Real-ESRGAN/releases/download/v0.1.0/RealESRGAN_x4plus.pth",
            "https://huggingface.co/xinntao/Real-ESRGAN/resolve/main/RealESRGAN_x4plus.pth",
        ),
        arch="rrdbnet",
        arch_args=dict(num_in_ch=3, num_out_ch=3, num_feat=64, num_block=23, num_grow_ch=32, scale=4),
    ),
    ModelId.GENERAL_FAST: ModelSpec(
        id=ModelId.GENERAL_FAST,
        label="Real-ESRGAN 4x (Fast)",
        description="Best for real photos and screenshots. Fast processing.",
        urls=(
            "https://github.com/xinntao/Real-ESRGAN/releases/download/v0.2.5.0/realesr-general-x4v3.pth",
            "https://huggingface.co/xinntao/Real-ESRGAN/resolve/main/realesr-general-x4v3.pth",
        ),
        arch="srvgg",
        arch_args=dict(num_in_ch=3, num_out_ch=3, num_feat=64, num_conv=32, upscale=4, act_type="prelu"),
    ),
}


def available_models(specs: Optional[Dict[ModelId, ModelSpec]] = None) -> List[Dict[str, object]]:
    """Describe the catalogue for model pickers, in catalogue order."""

    catalogue = MODEL_SPECS if specs is None else specs
    return [
        {"id": spec.id.value, "name": spec.label, "description": spec.description, "factor": spec.scale}
        for spec in catalogue.values()
    ]
