import numpy as np
import pytest
from PIL import Image

from spectroview.config import RenderParams
from spectroview.errors import ConfigurationError
from spectroview.fft_context import create_fft_context
from spectroview.frequency_mapping import create_frequency_mapping, hz_to_mel, mel_to_hz
from spectroview.renderer import (
    calculate_frequency_gain,
    cubic_interpolate,
    encode_png,
    frequency_gain_offsets,
    remap_spectrum_with_downsample,
    render_figure,
    render_to_image,
    sample_spectrum,
    save_png,
    source_bin_ranges,
)
from spectroview.spectrogram_engine import SpectrogramData, generate_spectrogram

SR = 44100
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def _sine_wave(freq: float, sr: int, duration: float) -> np.ndarray:
    t = np.arange(int(sr * duration)) / sr
    return np.sin(2 * np.pi * freq * t).astype(np.float32)


def _synthetic(data: np.ndarray, sample_rate: float = SR) -> SpectrogramData:
    num_frames, num_bins = data.shape
    fft_size = 2 * (num_bins - 1)
    return SpectrogramData(
        data=data.astype(np.float32),
        num_frames=num_frames,
        num_bins=num_bins,
        fft_size=fft_size,
        window_size=fft_size,
        hop_size=fft_size // 4,
        sample_rate=sample_rate,
        duration=num_frames * (fft_size // 4) / sample_rate,
    )


def _tone_spectrogram() -> SpectrogramData:
    return generate_spectrogram(_sine_wave(2000.0, SR, 0.5), SR, create_fft_context(1024))


def test_default_render_matches_spectrogram_grid():
    spectrogram = _tone_spectrogram()
    result = render_to_image(spectrogram)
    assert result.width == spectrogram.num_frames
    assert result.height == spectrogram.num_bins
    assert result.pixels.shape == (spectrogram.num_bins, spectrogram.num_frames, 4)
    assert result.pixels.dtype == np.uint8
    assert np.all(result.pixels[..., 3] == 255)
    assert result.timing.total_time >= 0.0


def test_top_row_is_highest_frequency():
    data = np.zeros((4, 513))
    data[:, 400:] = 1.0
    result = render_to_image(
        _synthetic(data),
        color_scale="grayscale",
        freq_scale="linear",
        min_freq=0.0,
        max_freq=SR / 2,
        downsample_mode="nearest",
        interpolation="nearest",
    )
    assert np.all(result.pixels[0, :, :3] == 255)
    assert np.all(result.pixels[-1, :, :3] == 0)


def test_output_size_overrides():
    result = render_to_image(_tone_spectrogram(), output_width=50, output_height=80)
    assert result.pixels.shape == (80, 50, 4)
    assert (result.width, result.height) == (50, 80)


def test_output_width_stretches_time():
    data = np.zeros((2, 129))
    data[1, :] = 1.0
    result = render_to_image(
        _synthetic(data, sample_rate=8000),
        color_scale="grayscale",
        freq_scale="linear",
        min_freq=100.0,
        max_freq=3000.0,
        interpolation="nearest",
        downsample_mode="nearest",
        output_width=4,
    )
    columns = result.pixels[0, :, 0]
    assert columns[0] == 0
    assert columns[-1] == 255


def test_invalid_render_options_raise():
    spectrogram = _tone_spectrogram()
    with pytest.raises(ConfigurationError):
        render_to_image(spectrogram, interpolation="sinc")
    with pytest.raises(ConfigurationError):
        render_to_image(spectrogram, downsample_mode="median")
    with pytest.raises(ConfigurationError):
        render_to_image(spectrogram, freq_scale="semitone")
    with pytest.raises(ConfigurationError):
        render_to_image(spectrogram, min_freq=5000.0, max_freq=1000.0)
    with pytest.raises(ConfigurationError):
        render_to_image(spectrogram, output_height=0)


def test_unknown_color_scale_falls_back_to_magma():
    spectrogram = _tone_spectrogram()
    fallback = render_to_image(spectrogram, color_scale="rainbow")
    magma = render_to_image(spectrogram, color_scale="magma")
    assert np.array_equal(fallback.pixels, magma.pixels)


def test_render_params_dataclass_feeds_renderer():
    params = RenderParams(color_scale="viridis", output_height=64)
    result = render_to_image(_tone_spectrogram(), **params.as_kwargs())
    assert result.height == 64


def test_source_bin_ranges_use_midpoints():
    low, high = source_bin_ranges(np.array([0.0, 2.0, 4.0]), 5)
    assert low.tolist() == [0, 1, 3]
    assert high.tolist() == [2, 4, 5]


def test_max_downsample_dominates_nearest():
    rng = np.random.default_rng(1)
    spectrum = rng.random((3, 200))
    mapping = np.geomspace(1.0, 199.0, 40)
    nearest = remap_spectrum_with_downsample(spectrum, mapping, "nearest", "linear")
    peak = remap_spectrum_with_downsample(spectrum, mapping, "max", "linear")
    average = remap_spectrum_with_downsample(spectrum, mapping, "average", "linear")
    assert np.all(peak >= nearest)
    assert np.all(average <= peak + 1e-12)


def test_max_downsample_keeps_narrow_peak():
    spectrum = np.zeros(100)
    spectrum[51] = 1.0
    mapping = np.linspace(0.0, 99.0, 10)
    assert remap_spectrum_with_downsample(spectrum, mapping, "nearest", "nearest").max() == 0.0
    assert remap_spectrum_with_downsample(spectrum, mapping, "max", "nearest").max() == 1.0


def test_average_downsample_includes_interpolated_sample():
    spectrum = np.array([0.0, 1.0, 2.0, 3.0, 4.0])
    mapping = np.array([0.0, 2.0, 4.0])
    result = remap_spectrum_with_downsample(spectrum, mapping, "average", "linear")
    # display bin 1 covers source bins 1..4 plus its sample at 2.0
    assert result[1] == pytest.approx((2.0 + 1.0 + 2.0 + 3.0 + 4.0) / 5.0)


def test_remap_overwrites_every_element_of_out():
    spectrum = np.random.default_rng(2).random((5, 64))
    mapping = np.linspace(0.0, 63.0, 16)
    out = np.full((5, 16), np.nan)
    result = remap_spectrum_with_downsample(spectrum, mapping, "max", "cubic", out=out)
    assert result is out
    assert not np.isnan(out).any()


def test_cubic_interpolation_never_negative():
    spectrum = np.array([0.0, 0.0, 1.0, 0.0, 0.0, 0.0])
    values = sample_spectrum(spectrum, np.linspace(0.0, 5.0, 51), "cubic")
    assert values.min() >= 0.0
    assert sample_spectrum(spectrum, np.array([2.0]), "cubic")[0] == pytest.approx(1.0)


def test_cubic_interpolate_hits_control_points():
    assert cubic_interpolate(0.0, 1.0, 2.0, 3.0, 0.0) == pytest.approx(1.0)
    assert cubic_interpolate(0.0, 1.0, 2.0, 3.0, 1.0) == pytest.approx(2.0)
    assert cubic_interpolate(0.0, 1.0, 2.0, 3.0, 0.5) == pytest.approx(1.5)


def test_frequency_gain_boosts_high_rows():
    assert calculate_frequency_gain(10000.0, 20.0) == pytest.approx(20.0)
    assert calculate_frequency_gain(500.0, 20.0) == 0.0

    data = np.full((3, 513), 0.5)
    flat = render_to_image(_synthetic(data), color_scale="grayscale", freq_scale="linear", min_freq=100.0, max_freq=20000.0)
    boosted = render_to_image(
        _synthetic(data),
        color_scale="grayscale",
        freq_scale="linear",
        min_freq=100.0,
        max_freq=20000.0,
        frequency_gain=20.0,
    )
    assert np.array_equal(flat.pixels[-1], boosted.pixels[-1])
    assert np.all(boosted.pixels[0, :, 0] > flat.pixels[0, :, 0])


def test_frequency_gain_follows_exact_hz_on_mel_scale():
    mapping = create_frequency_mapping(513, SR, "mel", 3, 100.0, 20000.0)
    offsets = frequency_gain_offsets(mapping, 513, SR, 20.0)
    middle_hz = float(mel_to_hz((hz_to_mel(100.0) + hz_to_mel(20000.0)) / 2.0))

    assert offsets[0] == 0.0
    assert offsets[1] == pytest.approx(20.0 * np.log10(middle_hz / 1000.0) / 40.0)
    assert offsets[2] == pytest.approx(20.0 * np.log10(20.0) / 40.0)
    # the middle mel row sits near 3.4 kHz, well below the linear midpoint of 10.05 kHz
    linear_offset = 20.0 * np.log10(10050.0 / 1000.0) / 40.0
    assert offsets[1] < linear_offset - 0.1


def test_png_encoding_and_save(tmp_path):
    result = render_to_image(_tone_spectrogram(), output_width=120, output_height=60)
    png = encode_png(result)
    assert png.startswith(PNG_SIGNATURE)

    output = save_png(png, tmp_path / "nested" / "tone.png")
    assert output.exists()
    with Image.open(output) as img:
        assert img.size == (120, 60)
        assert img.mode == "RGBA"


def test_save_png_rejects_garbage(tmp_path):
    target = tmp_path / "broken.png"
    with pytest.raises(RuntimeError):
        save_png(b"not a png", target)
    assert not target.exists()


def test_render_figure_outputs_png():
    spectrogram = _tone_spectrogram()
    result = render_to_image(spectrogram, output_height=100)
    png = render_figure(result, spectrogram, title="tone", figsize=(4.0, 2.0), dpi=80)
    assert png.startswith(PNG_SIGNATURE)
