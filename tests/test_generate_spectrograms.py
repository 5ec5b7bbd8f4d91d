import json

import numpy as np
import pytest
import soundfile as sf
from PIL import Image

from spectroview import generate_spectrograms as harness
from spectroview.errors import ConfigurationError


def _sine_wave(freq: float, sr: int, duration: float) -> np.ndarray:
    t = np.linspace(0, duration, int(sr * duration), endpoint=False)
    return (0.5 * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def _config_dict(tmp_path, **overrides):
    data = {
        "input_directory": str(tmp_path / "audio"),
        "output_directory": str(tmp_path / "out"),
        "output_width": 200,
        "output_height": 100,
    }
    data.update(overrides)
    return data


def _write_tone(directory, name="tone.wav", sr=16000):
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    sf.write(path, _sine_wave(1500.0, sr, duration=1.0), sr)
    return path


def test_config_defaults_and_round_trip(tmp_path):
    cfg = harness.HarnessConfig.from_dict(_config_dict(tmp_path))
    assert cfg.fft_size == 512
    assert cfg.effective_hop_size == int(512 * 0.15)
    assert cfg.interpolation == "cubic"
    assert cfg.gain == 25.0

    data = cfg.to_dict()
    assert data["input_directory"] == str(tmp_path / "audio")
    assert harness.HarnessConfig.from_dict(data) == cfg


def test_relative_directories_resolve_against_project_root(tmp_path):
    cfg = harness.HarnessConfig.from_dict({"input_directory": "audio", "output_directory": "spectrograms"})
    assert cfg.input_directory == harness.PROJECT_ROOT / "audio"
    assert cfg.to_dict()["output_directory"] == "spectrograms"


def test_config_rejects_unknown_choices(tmp_path):
    with pytest.raises(ConfigurationError):
        harness.HarnessConfig.from_dict(_config_dict(tmp_path, window="kaiser"))


def test_config_ignores_unknown_keys(tmp_path):
    cfg = harness.HarnessConfig.from_dict(_config_dict(tmp_path, legacy_option=True))
    assert not hasattr(cfg, "legacy_option")


def test_save_and_load_config(tmp_path):
    cfg = harness.HarnessConfig.from_dict(_config_dict(tmp_path, color_scale="viridis"))
    path = tmp_path / "config.json"
    harness.save_config(cfg, path)
    loaded = harness.load_config(path)
    assert loaded == cfg
    assert loaded.output_directory.is_dir()


def test_generate_spectrogram_png(tmp_path):
    wav = _write_tone(tmp_path / "audio")
    cfg = harness.HarnessConfig.from_dict(_config_dict(tmp_path))
    output = harness.generate_spectrogram_png(wav, cfg)
    assert output == tmp_path / "out" / "tone_spectrogram.png"
    with Image.open(output) as img:
        assert img.size == (200, 100)


def test_annotated_output_with_auto_range(tmp_path):
    wav = _write_tone(tmp_path / "audio")
    cfg = harness.HarnessConfig.from_dict(_config_dict(tmp_path, annotate=True, auto_frequency_range=True, dpi=60))
    output = harness.generate_spectrogram_png(wav, cfg)
    assert output.read_bytes().startswith(b"\x89PNG\r\n\x1a\n")


def test_run_harness_processes_directory(tmp_path):
    _write_tone(tmp_path / "audio", "a.wav")
    _write_tone(tmp_path / "audio", "b.flac")
    (tmp_path / "audio" / "notes.txt").write_text("skip me")
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(_config_dict(tmp_path, algorithm="reassignment", freq_scale="mel")))

    outputs = harness.run_harness(config_path)
    assert [p.name for p in outputs] == ["a_spectrogram.png", "b_spectrogram.png"]
    assert all(p.exists() for p in outputs)


def test_main_reports_progress(tmp_path, monkeypatch, capsys):
    _write_tone(tmp_path / "audio")
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(_config_dict(tmp_path)))
    monkeypatch.setattr("sys.argv", ["generate_spectrograms", str(config_path), "--verbose"])

    harness.main()
    captured = capsys.readouterr().out
    assert "Processing tone.wav" in captured
    assert (tmp_path / "out" / "tone_spectrogram.png").exists()


def test_main_without_audio(tmp_path, monkeypatch, capsys):
    (tmp_path / "audio").mkdir()
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(_config_dict(tmp_path)))
    monkeypatch.setattr("sys.argv", ["generate_spectrograms", str(config_path)])

    harness.main()
    assert "No audio files found" in capsys.readouterr().out


def test_bundled_config_loads():
    with harness.CONFIG_PATH.open(encoding="utf-8") as f:
        raw = json.load(f)
    cfg = harness.HarnessConfig.from_dict(raw)
    assert cfg.output_width == 1000
    assert cfg.output_height == 500
    assert cfg.overlap == 0.85


def test_config_rejects_unsupported_fft_size(tmp_path):
    with pytest.raises(ConfigurationError):
        harness.HarnessConfig.from_dict(_config_dict(tmp_path, fft_size=500))
