import json

import pytest  # type: ignore
from PIL import Image

import snip_upscaler.cli as cli_module
from conftest import FakeRegistry, FakeResolver, NearestAdapter
from snip_upscaler.config import UpscalerConfig
from snip_upscaler.models import MODEL_SPECS
from snip_upscaler.pipeline import UpscaleOrchestrator


def test_config_only_emits_resolved_configuration(tmp_path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(
            [
                "in.png",
                "out.png",
                "--model",
                "anime_plus",
                "--backend",
                "cpu",
                "--tile-size",
                "32",
                "--cache-dir",
                str(tmp_path),
                "--config-only",
            ]
        )
    assert excinfo.value.code == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["model"] == "anime_plus"
    assert payload["backend"] == "cpu"
    assert payload["tile_size"] == 32
    assert payload["min_overlap"] == 12
    assert payload["cache_dir"] == str(tmp_path)


def test_list_models_prints_catalogue(capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["--list-models"])
    assert excinfo.value.code == 0

    listing = json.loads(capsys.readouterr().out)
    assert [entry["id"] for entry in listing] == [model.value for model in MODEL_SPECS]
    general_fast = next(entry for entry in listing if entry["id"] == "general_fast")
    assert general_fast["name"] == "Real-ESRGAN 4x (Fast)"
    assert general_fast["factor"] == 4
    assert general_fast["description"]


def test_invalid_factor_is_rejected(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli_module.main(["in.png", "out.png", "--factor", "0", "--cache-dir", str(tmp_path)])
    assert excinfo.value.code == 2


def test_main_writes_png_with_metadata(tmp_path, monkeypatch) -> None:
    source_path = tmp_path / "snippet.png"
    Image.new("RGB", (20, 12), color=(1, 2, 3)).save(source_path)
    destination = tmp_path / "out" / "snippet_x2.png"

    def fake_orchestrator(registry, *, config: UpscalerConfig):
        return UpscaleOrchestrator(
            FakeRegistry(),
            resolver=FakeResolver(),
            adapter=NearestAdapter(),
            config=config,
        )

    monkeypatch.setattr(cli_module, "UpscaleOrchestrator", fake_orchestrator)

    exit_code = cli_module.main(
        [str(source_path), str(destination), "--factor", "2", "--tile-size", "16", "--cache-dir", str(tmp_path / "cache")]
    )

    assert exit_code == 0
    with Image.open(destination) as result:
        assert result.size == (40, 24)
        metadata = json.loads(result.text["snip_upscaler_metadata"])
    assert metadata["upscale"] == {"model": "general_fast", "backend": "cpu", "factor": 2}
    sidecar = json.loads(destination.with_suffix(".json").read_text(encoding="utf-8"))
    assert sidecar["source"]["width"] == 20


def test_main_reports_failures(tmp_path, monkeypatch) -> None:
    source_path = tmp_path / "snippet.png"
    Image.new("RGB", (8, 8)).save(source_path)

    def failing_orchestrator(registry, *, config: UpscalerConfig):
        return UpscaleOrchestrator(
            FakeRegistry(fail=True),
            resolver=FakeResolver(),
            adapter=NearestAdapter(),
            config=config,
        )

    monkeypatch.setattr(cli_module, "UpscaleOrchestrator", failing_orchestrator)

    exit_code = cli_module.main([str(source_path), str(tmp_path / "out.png"), "--cache-dir", str(tmp_path)])

    assert exit_code == 1
    assert not (tmp_path / "out.png").exists()


def test_config_round_trips_and_reads_environment(tmp_path, monkeypatch) -> None:
    config = UpscalerConfig(cache_dir=tmp_path, tile_size=48, min_overlap=6)
    assert UpscalerConfig.from_dict(config.to_dict()) == config
    assert UpscalerConfig.from_dict(None) == UpscalerConfig()

    monkeypatch.setenv("SNIP_UPSCALER_CACHE_DIR", str(tmp_path / "models"))
    assert UpscalerConfig.from_env().cache_dir == tmp_path / "models"
