"""Command line interface for `snip-upscale`."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from PIL import Image

from .config import UpscalerConfig
from .errors import UpscaleError
from .exporter import build_metadata, save_image_with_metadata
from .models import BackendId, ModelId, available_models
from .pipeline import UpscaleOrchestrator, UpscalingOptions
from .registry import ModelRegistry
from .worker import UpscalingService

logger = logging.getLogger(__name__)


class _ListModelsAction(argparse.Action):
    """Print the model catalogue as JSON and exit, like ``--version``."""

    def __init__(self, option_strings, dest, **kwargs) -> None:
        super().__init__(option_strings, dest, nargs=0, default=argparse.SUPPRESS, **kwargs)

    def __call__(self, parser, namespace, values, option_string=None) -> None:
        print(json.dumps(available_models(), indent=2))
        parser.exit()


def build_parser() -> argparse.ArgumentParser:
    defaults = UpscalerConfig.from_env()
    parser = argparse.ArgumentParser(
        prog="snip-upscale",
        description="Upscale an image tile by tile with a Real-ESRGAN model.",
    )
    parser.add_argument("input", type=Path, help="Image to upscale.")
    parser.add_argument("output", type=Path, help="Destination PNG; a JSON metadata sidecar is written next to it.")
    parser.add_argument(
        "--model",
        choices=[model.value for model in ModelId],
        default=ModelId.GENERAL_FAST.value,
        help="Model to use (default: general_fast).",
    )
    parser.add_argument(
        "--backend",
        choices=[backend.value for backend in BackendId],
        default=BackendId.AUTO.value,
        help="Compute backend (default: auto).",
    )
    parser.add_argument("--factor", type=int, default=4, help="Upscale factor produced by the model (default: 4).")
    parser.add_argument("--tile-size", type=int, default=None, help="Tile edge in pixels (default: the model's input size).")
    parser.add_argument("--min-overlap", type=int, default=defaults.min_overlap, help="Minimum tile overlap in pixels (default: 12).")
    parser.add_argument("--cache-dir", type=Path, default=defaults.cache_dir, help="Directory for downloaded model weights.")
    parser.add_argument("--max-cached-models", type=int, default=defaults.max_cached_models, help="Models kept loaded in memory (default: 4).")
    parser.add_argument("--download-timeout", type=float, default=defaults.download_timeout, help="Model download timeout in seconds (default: 60).")
    parser.add_argument("--list-models", action=_ListModelsAction, help="List the available models as JSON and exit.")
    parser.add_argument("--config-only", action="store_true", help="Emit resolved configuration as JSON and exit.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def parse_args(argv: list[str] | None = None) -> tuple[argparse.Namespace, UpscalerConfig, UpscalingOptions]:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = UpscalerConfig(
        cache_dir=args.cache_dir,
        tile_size=args.tile_size,
        min_overlap=args.min_overlap,
        max_cached_models=max(1, args.max_cached_models),
        download_timeout=args.download_timeout,
    )
    try:
        options = UpscalingOptions(model=args.model, backend=args.backend, factor=args.factor)
    except ValueError as exc:
        parser.error(str(exc))
    if args.config_only:
        payload = {
            **config.to_dict(),
            "model": options.model.value,
            "backend": options.backend.value,
            "factor": options.factor,
        }
        print(json.dumps(payload, indent=2))
        sys.exit(0)
    return args, config, options


class _ProgressLog:
    """Logs worker progress and remembers which backend finished the job."""

    def __init__(self) -> None:
        self.backend: str | None = None

    def __call__(self, message: dict) -> None:
        if message.get("done"):
            self.backend = message.get("backend")
        elif "progress" in message:
            logger.info("%s", message.get("info", ""))


def main(argv: list[str] | None = None) -> int:
    args, config, options = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    registry = ModelRegistry(
        config.resolved_cache_dir(),
        max_entries=config.max_cached_models,
        download_timeout=config.download_timeout,
    )
    service = UpscalingService(UpscaleOrchestrator(registry, config=config))
    progress = _ProgressLog()
    try:
        with Image.open(args.input) as source:
            source.load()
            source_size = source.size
            result = service.upscale_image(source, options, on_progress=progress)
    except (OSError, UpscaleError) as exc:
        logger.error("%s", exc)
        return 1
    finally:
        service.close()
        registry.wait_for_pending_writes()

    payload = build_metadata(args.input, source_size, options, backend=progress.backend)
    save_image_with_metadata(result, args.output, payload)
    logger.info("Wrote %s (%s×%s)", args.output, result.width, result.height)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
