import io
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
from matplotlib.cm import ScalarMappable  # noqa: E402
from matplotlib.colors import ListedColormap, Normalize  # noqa: E402
from matplotlib.ticker import MaxNLocator  # noqa: E402
from PIL import Image, UnidentifiedImageError  # noqa: E402

from .color_scales import DEFAULT_COLOR_LUT_CACHE, ColorLUTCache, lookup_colors  # noqa: E402
from .config import (  # noqa: E402
    DEFAULT_CMAP,
    DEFAULT_DOWNSAMPLE,
    DEFAULT_FMAX,
    DEFAULT_FMIN,
    DEFAULT_FREQ_SCALE,
    DEFAULT_FREQUENCY_GAIN,
    DEFAULT_INTERPOLATION,
    DEFAULT_RANGE_DB,
    DOWNSAMPLE_OPTIONS,
    FREQUENCY_GAIN_DB_SCALE,
    FREQUENCY_GAIN_PIVOT_HZ,
    INTERPOLATION_OPTIONS,
)
from .errors import ConfigurationError  # noqa: E402
from .frequency_mapping import create_frequency_mapping, mapping_to_hz  # noqa: E402
from .spectrogram_engine import SpectrogramData  # noqa: E402
from .utils import clamp_frequency_range, validate_choice  # noqa: E402

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderTiming:
    total_time: float = 0.0
    frequency_mapping_time: float = 0.0
    remapping_time: float = 0.0
    color_mapping_time: float = 0.0


@dataclass
class RenderResult:
    """RGBA pixels of shape (height, width, 4); row 0 is the highest frequency."""

    pixels: np.ndarray
    width: int
    height: int
    timing: RenderTiming = field(default_factory=RenderTiming)


def cubic_interpolate(p0, p1, p2, p3, t):
    """Catmull-Rom spline through p1 (t=0) and p2 (t=1)."""
    t2 = t * t
    t3 = t2 * t
    return 0.5 * (
        2.0 * p1
        + (-p0 + p2) * t
        + (2.0 * p0 - 5.0 * p1 + 4.0 * p2 - p3) * t2
        + (-p0 + 3.0 * p1 - 3.0 * p2 + p3) * t3
    )


def sample_spectrum(spectrum: np.ndarray, pos, interpolation: str = DEFAULT_INTERPOLATION) -> np.ndarray:
    """
    Read `spectrum` (last axis = bins) at fractional bin position(s) `pos`.

    Indices are clamped to the spectrum; cubic overshoot below zero is clamped
    to zero.
    """
    spectrum = np.asarray(spectrum)
    pos = np.asarray(pos, dtype=np.float64)
    last = spectrum.shape[-1] - 1

    if interpolation == "nearest":
        idx = np.clip(np.floor(pos + 0.5).astype(np.intp), 0, last)
        return spectrum[..., idx].astype(np.float64)

    idx = np.floor(pos).astype(np.intp)
    frac = pos - idx

    if interpolation == "linear":
        i0 = np.clip(idx, 0, last)
        i1 = np.clip(idx + 1, 0, last)
        return spectrum[..., i0] * (1.0 - frac) + spectrum[..., i1] * frac

    if interpolation != "cubic":
        raise ConfigurationError(f"Unsupported interpolation '{interpolation}'")

    p0 = spectrum[..., np.clip(idx - 1, 0, last)]
    p1 = spectrum[..., np.clip(idx, 0, last)]
    p2 = spectrum[..., np.clip(idx + 1, 0, last)]
    p3 = spectrum[..., np.clip(idx + 2, 0, last)]
    return np.maximum(0.0, cubic_interpolate(p0, p1, p2, p3, frac))


def source_bin_ranges(mapping: np.ndarray, spectrum_length: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Inclusive whole-bin range [low, high] covered by each display bin.

    Each display bin spans from the midpoint with its lower neighbour to the
    midpoint with its upper neighbour; the outermost bins stop at their own
    mapped position.
    """
    mapping = np.asarray(mapping, dtype=np.float64)
    count = len(mapping)
    start = np.empty(count)
    end = np.empty(count)
    midpoints = (mapping[:-1] + mapping[1:]) * 0.5
    start[0] = mapping[0]
    start[1:] = midpoints
    end[:-1] = midpoints
    end[-1] = mapping[-1] if count > 1 else mapping[-1] + 0.5

    start = np.maximum(start, 0.0)
    end = np.minimum(end, spectrum_length - 1)
    return np.floor(start).astype(np.intp), np.floor(end + 1.0).astype(np.intp)


def remap_spectrum_with_downsample(
    spectrum: np.ndarray,
    mapping: np.ndarray,
    downsample_mode: str = DEFAULT_DOWNSAMPLE,
    interpolation: str = DEFAULT_INTERPOLATION,
    out: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Resample the last axis of `spectrum` onto `mapping`, combining bins when shrinking.

    In "max" and "average" mode the interpolated sample at each mapped
    position is merged with every whole source bin its range covers. In
    "nearest" mode, or when the range is a single bin, the interpolated
    sample is used as is. `out`, when given, has shape
    `spectrum.shape[:-1] + (len(mapping),)` and every element is overwritten.
    """
    spectrum = np.asarray(spectrum)
    length = spectrum.shape[-1]
    sampled = sample_spectrum(spectrum, mapping, interpolation)
    result = out if out is not None else np.empty(sampled.shape, dtype=np.float64)
    result[...] = sampled

    if downsample_mode == "nearest":
        return result
    if downsample_mode not in ("max", "average"):
        raise ConfigurationError(f"Unsupported downsample mode '{downsample_mode}'")

    bin_low, bin_high = source_bin_ranges(mapping, length)
    for i in np.flatnonzero(bin_high > bin_low):
        block = spectrum[..., bin_low[i] : min(bin_high[i], length - 1) + 1]
        if block.shape[-1] == 0:
            continue
        if downsample_mode == "max":
            result[..., i] = np.maximum(sampled[..., i], block.max(axis=-1))
        else:
            result[..., i] = (sampled[..., i] + block.sum(axis=-1)) / (block.shape[-1] + 1)
    return result


def calculate_frequency_gain(hz, frequency_gain: float):
    """dB boost growing by `frequency_gain` per decade above 1 kHz."""
    hz = np.asarray(hz, dtype=np.float64)
    if frequency_gain == 0:
        return np.zeros_like(hz)
    above = hz > FREQUENCY_GAIN_PIVOT_HZ
    decades = np.log10(np.where(above, hz, FREQUENCY_GAIN_PIVOT_HZ) / FREQUENCY_GAIN_PIVOT_HZ)
    return np.where(above, frequency_gain * decades, 0.0)


def frequency_gain_offsets(mapping: np.ndarray, num_bins: int, sample_rate: float, frequency_gain: float) -> np.ndarray:
    """Per-display-bin intensity offsets: dB boost folded into [0, 1] by a fixed divisor."""
    hz = mapping_to_hz(mapping, num_bins, sample_rate)
    return calculate_frequency_gain(hz, frequency_gain) / FREQUENCY_GAIN_DB_SCALE


def _positive_or_default(value: Optional[int], default: int, name: str) -> int:
    if value is None:
        return default
    if int(value) < 1:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return int(value)


def render_to_image(
    spectrogram: SpectrogramData,
    *,
    color_scale: str = DEFAULT_CMAP,
    freq_scale: str = DEFAULT_FREQ_SCALE,
    min_freq: float = DEFAULT_FMIN,
    max_freq: float = DEFAULT_FMAX,
    frequency_gain: float = DEFAULT_FREQUENCY_GAIN,
    range_db: Optional[float] = None,
    downsample_mode: str = DEFAULT_DOWNSAMPLE,
    interpolation: str = DEFAULT_INTERPOLATION,
    output_width: Optional[int] = None,
    output_height: Optional[int] = None,
    lut_cache: Optional[ColorLUTCache] = None,
) -> RenderResult:
    """
    Render a spectrogram into an RGBA pixel buffer.

    Rows are display bins laid out on `freq_scale` between `min_freq` and
    `max_freq` (clamped to [1 Hz, Nyquist]), highest frequency first; columns
    are frames, earliest first. `output_height` defaults to the number of
    source bins and `output_width` to the number of frames; a different width
    resamples the time axis with the same downsample and interpolation modes.

    `range_db` is accepted for symmetry with generation. The frequency boost
    is folded into intensities with a fixed 40 dB divisor whatever the range.
    """
    downsample_mode = validate_choice(downsample_mode, DOWNSAMPLE_OPTIONS, "downsample mode")
    interpolation = validate_choice(interpolation, INTERPOLATION_OPTIONS, "interpolation")
    cache = lut_cache if lut_cache is not None else DEFAULT_COLOR_LUT_CACHE

    total_start = time.perf_counter()
    data = np.asarray(spectrogram.data, dtype=np.float64).reshape(spectrogram.num_frames, spectrogram.num_bins)
    num_frames, num_bins = data.shape
    sample_rate = spectrogram.sample_rate

    display_bins = _positive_or_default(output_height, num_bins, "output_height")
    width = _positive_or_default(output_width, num_frames, "output_width")

    low, high = clamp_frequency_range(min_freq, max_freq, sample_rate)
    if (low, high) != (min_freq, max_freq):
        logger.debug("Frequency range %s-%s Hz clamped to %s-%s Hz", min_freq, max_freq, low, high)
    if range_db is not None and range_db != DEFAULT_RANGE_DB and frequency_gain:
        logger.debug("Frequency gain uses a fixed %.0f dB divisor; range %.1f dB is not applied", FREQUENCY_GAIN_DB_SCALE, range_db)

    start = time.perf_counter()
    freq_mapping = create_frequency_mapping(num_bins, sample_rate, freq_scale, display_bins, low, high)
    gain_offsets = frequency_gain_offsets(freq_mapping, num_bins, sample_rate, frequency_gain)
    frequency_mapping_time = (time.perf_counter() - start) * 1000.0

    start = time.perf_counter()
    display = remap_spectrum_with_downsample(data, freq_mapping, downsample_mode, interpolation)
    if width != num_frames:
        time_mapping = np.linspace(0.0, num_frames - 1, width) if width > 1 else np.zeros(1)
        display = remap_spectrum_with_downsample(display.T, time_mapping, downsample_mode, interpolation).T
    remapping_time = (time.perf_counter() - start) * 1000.0

    start = time.perf_counter()
    values = np.clip(display + gain_offsets, 0.0, 1.0)
    rgb = lookup_colors(values, cache.get(color_scale))
    pixels = np.empty((display_bins, width, 4), dtype=np.uint8)
    # (frame, bin, rgb) -> (row, column, rgb) with the top row at the highest bin
    pixels[..., :3] = rgb.transpose(1, 0, 2)[::-1]
    pixels[..., 3] = 255
    color_mapping_time = (time.perf_counter() - start) * 1000.0

    timing = RenderTiming(
        total_time=(time.perf_counter() - total_start) * 1000.0,
        frequency_mapping_time=frequency_mapping_time,
        remapping_time=remapping_time,
        color_mapping_time=color_mapping_time,
    )
    logger.debug("Rendered %dx%d %s/%s image in %.1f ms", width, display_bins, freq_scale, color_scale, timing.total_time)
    return RenderResult(pixels=pixels, width=width, height=display_bins, timing=timing)


def to_pil_image(result: RenderResult) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(result.pixels))


def encode_png(result: RenderResult) -> bytes:
    buffer = io.BytesIO()
    to_pil_image(result).save(buffer, format="PNG")
    return buffer.getvalue()


def save_png(png_bytes: bytes, output_path: Path) -> Path:
    """Write PNG bytes and verify the file decodes; raises RuntimeError otherwise."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(png_bytes)
    if output_path.stat().st_size == 0:
        raise RuntimeError(f"Empty PNG written to {output_path}")
    try:
        with Image.open(output_path) as png_check:
            png_check.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        output_path.unlink(missing_ok=True)
        raise RuntimeError(f"Invalid PNG written to {output_path}: {exc}") from exc
    return output_path


def render_figure(
    result: RenderResult,
    spectrogram: SpectrogramData,
    *,
    color_scale: str = DEFAULT_CMAP,
    freq_scale: str = DEFAULT_FREQ_SCALE,
    min_freq: float = DEFAULT_FMIN,
    max_freq: float = DEFAULT_FMAX,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (10.0, 4.0),
    dpi: int = 140,
    lut_cache: Optional[ColorLUTCache] = None,
) -> bytes:
    """
    Annotated preview: the rendered pixels with time and frequency axes, as PNG bytes.

    The colorbar spans [gain - range, gain] dB of the spectrogram using the
    same LUT the pixels were colored with.
    """
    cache = lut_cache if lut_cache is not None else DEFAULT_COLOR_LUT_CACHE
    low, high = clamp_frequency_range(min_freq, max_freq, spectrogram.sample_rate)
    mapping = create_frequency_mapping(
        spectrogram.num_bins, spectrogram.sample_rate, freq_scale, result.height, low, high
    )
    row_hz = mapping_to_hz(mapping, spectrogram.num_bins, spectrogram.sample_rate)

    fig, ax = plt.subplots(figsize=figsize, dpi=dpi)
    ax.imshow(
        result.pixels,
        aspect="auto",
        interpolation="nearest",
        extent=(0.0, spectrogram.duration, -0.5, result.height - 0.5),
    )
    ax.xaxis.set_major_locator(MaxNLocator(nbins=8))
    tick_bins = np.unique(np.linspace(0, result.height - 1, num=min(8, result.height)).round().astype(int))
    ax.set_yticks(tick_bins)
    ax.set_yticklabels([f"{row_hz[b]:.0f}" for b in tick_bins])
    ax.set_xlabel("Time (s)")
    ax.set_ylabel(f"Frequency (Hz, {freq_scale})")
    if title:
        ax.set_title(title)

    vmax = spectrogram.gain
    vmin = spectrogram.gain - spectrogram.range_db
    colormap = ListedColormap(cache.get(color_scale) / 255.0)
    cbar = fig.colorbar(ScalarMappable(norm=Normalize(vmin=vmin, vmax=vmax), cmap=colormap), ax=ax)
    cbar.set_label("Amplitude (dB)")
    cbar.set_ticks(np.linspace(vmin, vmax, num=3))
    fig.tight_layout()
    buffer = io.BytesIO()
    fig.savefig(buffer, format="png", dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    buffer.seek(0)
    return buffer.read()
