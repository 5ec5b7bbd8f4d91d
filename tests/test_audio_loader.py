import numpy as np
import pytest
import soundfile as sf

from spectroview.audio_loader import AudioLoadingError, audio_info, is_supported_file, load_audio


def _sine_wave(freq: float, sr: int, duration: float) -> np.ndarray:
    t = np.linspace(0, duration, int(sr * duration), endpoint=False)
    return np.sin(2 * np.pi * freq * t).astype(np.float32)


def test_audio_loader_resamples(tmp_path):
    original_sr = 16000
    audio = _sine_wave(800.0, original_sr, duration=0.25)
    path = tmp_path / "tone.wav"
    sf.write(path, audio, original_sr)

    loaded, sr = load_audio(path, target_sample_rate=8000)
    assert sr == 8000
    assert loaded.dtype == np.float32
    assert abs(len(loaded) - 2000) <= 1


def test_audio_loader_keeps_native_rate(tmp_path):
    audio = _sine_wave(440.0, 22050, duration=0.1)
    path = tmp_path / "native.flac"
    sf.write(path, audio, 22050)

    loaded, sr = load_audio(path)
    assert sr == 22050
    assert len(loaded) == len(audio)


def test_stereo_is_averaged_or_selected(tmp_path):
    frames = 1000
    stereo = np.column_stack([np.full(frames, 0.5), np.full(frames, -0.5)])
    path = tmp_path / "stereo.wav"
    sf.write(path, stereo, 8000)

    mixed, _ = load_audio(path)
    assert np.allclose(mixed, 0.0, atol=1e-4)

    left, _ = load_audio(path, channel=0)
    right, _ = load_audio(path, channel=1)
    assert np.allclose(left, 0.5, atol=1e-4)
    assert np.allclose(right, -0.5, atol=1e-4)

    with pytest.raises(AudioLoadingError):
        load_audio(path, channel=2)


def test_max_duration_trims(tmp_path):
    path = tmp_path / "long.wav"
    sf.write(path, _sine_wave(300.0, 8000, duration=1.0), 8000)
    loaded, _ = load_audio(path, max_duration_sec=0.5)
    assert len(loaded) == 4000


def test_unreadable_file_raises(tmp_path):
    path = tmp_path / "broken.wav"
    path.write_bytes(b"definitely not audio")
    with pytest.raises(AudioLoadingError):
        load_audio(path)
    with pytest.raises(AudioLoadingError):
        audio_info(path)


def test_audio_info(tmp_path):
    path = tmp_path / "info.wav"
    sf.write(path, _sine_wave(300.0, 8000, duration=0.5), 8000)
    info = audio_info(path)
    assert info["sample_rate"] == 8000
    assert info["frames"] == 4000
    assert info["channels"] == 1
    assert info["duration"] == pytest.approx(0.5)


def test_supported_extensions():
    assert is_supported_file("clip.WAV")
    assert is_supported_file("clip.flac")
    assert not is_supported_file("notes.txt")
