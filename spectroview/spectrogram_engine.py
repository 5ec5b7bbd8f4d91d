import logging
import math
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import numpy as np

from .config import (
    ALGORITHM_OPTIONS,
    DC_BINS_TO_SKIP,
    DEFAULT_GAIN_DB,
    DEFAULT_RANGE_DB,
    MAGNITUDE_EPSILON,
    REASSIGNMENT_MIN_POWER,
)
from .errors import ConfigurationError, InsufficientDataError
from .fft_context import FFTContext
from .window_functions import DEFAULT_WINDOW_CACHE, WindowCache, apply_window_coefficients, coherent_gain

logger = logging.getLogger(__name__)


def _ms_since(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


@dataclass(frozen=True)
class SpectrogramTiming:
    """Milliseconds spent in the transform and in the whole call."""

    fft_time: float = 0.0
    total_time: float = 0.0
    ffts_per_second: float = 0.0


@dataclass(frozen=True)
class DetailedTiming(SpectrogramTiming):
    windowing_time: float = 0.0
    zero_padding_time: float = 0.0
    magnitude_time: float = 0.0
    normalization_time: float = 0.0
    allocation_time: float = 0.0
    frame_extraction_time: float = 0.0


@dataclass
class SpectrogramData:
    """
    Normalized spectrogram and the parameters that produced it.

    `data` is a read-only float32 array of shape (num_frames, num_bins) with
    values in [0, 1]; row = frame, column = frequency bin.
    """

    data: np.ndarray
    num_frames: int
    num_bins: int
    fft_size: int
    window_size: int
    hop_size: int
    sample_rate: float
    duration: float
    timing: SpectrogramTiming = field(default_factory=SpectrogramTiming)
    detailed_timing: DetailedTiming = field(default_factory=DetailedTiming)
    algorithm: str = "standard"
    window_type: str = "hann"
    gain: float = DEFAULT_GAIN_DB
    range_db: float = DEFAULT_RANGE_DB

    @property
    def nyquist(self) -> float:
        return self.sample_rate / 2.0

    def frequencies(self) -> np.ndarray:
        return np.linspace(0.0, self.nyquist, self.num_bins)

    def times(self) -> np.ndarray:
        """Centre time of each frame in seconds."""
        starts = np.arange(self.num_frames, dtype=np.float64) * self.hop_size
        return (starts + self.window_size / 2.0) / self.sample_rate


@dataclass(frozen=True)
class FrequencyRange:
    min_freq: float
    max_freq: float


def count_frames(num_samples: int, window_size: int, hop_size: int) -> int:
    return (num_samples - window_size) // hop_size + 1


def resolve_hop_size(
    num_samples: int,
    fft_size: int,
    window_size: int,
    hop_size: Optional[int] = None,
    target_width: Optional[int] = None,
) -> int:
    """
    Pick the hop size, raising it only when `target_width` caps the frame count.

    The result is the smallest hop not below the requested one that yields at
    most `target_width` frames.
    """
    hop = fft_size // 4 if hop_size is None else int(hop_size)
    if hop < 1:
        raise ConfigurationError(f"hop_size must be >= 1, got {hop}")
    if target_width is None:
        return hop
    if target_width < 1:
        raise ConfigurationError(f"target_width must be positive, got {target_width}")

    span = num_samples - window_size
    if count_frames(num_samples, window_size, hop) > target_width:
        min_hop = span // target_width + 1
        logger.debug("Raising hop size from %d to %d to cap frames at %d", hop, max(hop, min_hop), target_width)
        hop = max(hop, min_hop)
    return hop


def _run_fft(fft_context: FFTContext, frame: np.ndarray, num_bins: int) -> np.ndarray:
    """Load `frame` into the context, execute, and copy out the first num_bins bins."""
    input_buffer = fft_context.get_input_buffer()
    if fft_context.is_real:
        input_buffer[: fft_context.size] = frame
    else:
        input_buffer[0 : 2 * fft_context.size : 2] = frame
        input_buffer[1 : 2 * fft_context.size : 2] = 0.0

    fft_context.run()

    output = fft_context.get_output_buffer()
    spectrum = np.empty(num_bins, dtype=np.complex128)
    spectrum.real = output[0 : 2 * num_bins : 2]
    spectrum.imag = output[1 : 2 * num_bins : 2]
    return spectrum


def normalize_magnitudes(magnitudes: np.ndarray, norm_factor: float, gain: float, range_db: float) -> np.ndarray:
    """Convert raw magnitudes to dB re full scale, then map [gain - range, gain] onto [0, 1]."""
    db = 20.0 * np.log10(magnitudes / norm_factor + MAGNITUDE_EPSILON)
    return np.clip((db - (gain - range_db)) / range_db, 0.0, 1.0)


class _FrameBuffers:
    """Scratch buffers for one window variant, reused across frames."""

    def __init__(self, window_size: int, fft_size: int):
        self.window_size = window_size
        self.windowed = np.empty(window_size, dtype=np.float64)
        self.padded = np.zeros(fft_size, dtype=np.float64) if fft_size > window_size else None

    def fill(self, frame_data: np.ndarray, coefficients: np.ndarray) -> None:
        apply_window_coefficients(frame_data, coefficients, out=self.windowed)

    def fft_input(self) -> np.ndarray:
        if self.padded is None:
            return self.windowed
        self.padded[: self.window_size] = self.windowed
        # The tail is cleared every frame, never trusted from the previous one.
        self.padded[self.window_size :] = 0.0
        return self.padded


def _generate_standard(samples, fft_context, hop_size, window_size, window_type, gain, range_db, cache, timings):
    fft_size = fft_context.size
    num_bins = fft_size // 2 + 1
    num_frames = count_frames(len(samples), window_size, hop_size)

    start = time.perf_counter()
    spectrogram = np.zeros((num_frames, num_bins), dtype=np.float32)
    buffers = _FrameBuffers(window_size, fft_size)
    magnitudes = np.empty(num_bins, dtype=np.float64)
    timings["allocation_time"] += _ms_since(start)

    coefficients = cache.get(window_type, window_size, "standard")
    norm_factor = (fft_size * coherent_gain(window_type)) / 2.0

    for frame in range(num_frames):
        start = time.perf_counter()
        offset = frame * hop_size
        frame_data = samples[offset : offset + window_size]
        timings["frame_extraction_time"] += _ms_since(start)

        start = time.perf_counter()
        buffers.fill(frame_data, coefficients)
        timings["windowing_time"] += _ms_since(start)

        start = time.perf_counter()
        fft_input = buffers.fft_input()
        timings["zero_padding_time"] += _ms_since(start)

        start = time.perf_counter()
        spectrum = _run_fft(fft_context, fft_input, num_bins)
        timings["fft_time"] += _ms_since(start)

        start = time.perf_counter()
        np.abs(spectrum, out=magnitudes)
        timings["magnitude_time"] += _ms_since(start)

        start = time.perf_counter()
        row = spectrogram[frame]
        row[:DC_BINS_TO_SKIP] = 0.0
        row[DC_BINS_TO_SKIP:] = normalize_magnitudes(magnitudes[DC_BINS_TO_SKIP:], norm_factor, gain, range_db)
        timings["normalization_time"] += _ms_since(start)

    return spectrogram


def _round_half_up(values):
    """Round to the nearest integer with ties toward +inf, also for negatives (-2.5 -> -2)."""
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


def _reassigned_coordinates(bins, frame, freq_correction, time_correction):
    """Target (bin, frame) cells for values moved by the frequency and time corrections."""
    return _round_half_up(bins + freq_correction), _round_half_up(frame + time_correction)


def _generate_reassigned(samples, fft_context, hop_size, window_size, window_type, gain, range_db, cache, timings):
    fft_size = fft_context.size
    num_bins = fft_size // 2 + 1
    num_frames = count_frames(len(samples), window_size, hop_size)

    start = time.perf_counter()
    energy = np.zeros((num_frames, num_bins), dtype=np.float32)
    buffers_h = _FrameBuffers(window_size, fft_size)
    buffers_dh = _FrameBuffers(window_size, fft_size)
    buffers_th = _FrameBuffers(window_size, fft_size)
    timings["allocation_time"] += _ms_since(start)

    coeffs_h = cache.get(window_type, window_size, "standard")
    coeffs_dh = cache.get(window_type, window_size, "derivative")
    coeffs_th = cache.get(window_type, window_size, "timeRamped")

    norm_factor = (fft_size * coherent_gain(window_type)) / 2.0
    freq_correction_factor = fft_size / (2.0 * math.pi)
    bins = np.arange(DC_BINS_TO_SKIP, num_bins, dtype=np.float64)

    for frame in range(num_frames):
        start = time.perf_counter()
        offset = frame * hop_size
        frame_data = samples[offset : offset + window_size]
        timings["frame_extraction_time"] += _ms_since(start)

        start = time.perf_counter()
        buffers_h.fill(frame_data, coeffs_h)
        buffers_dh.fill(frame_data, coeffs_dh)
        buffers_th.fill(frame_data, coeffs_th)
        timings["windowing_time"] += _ms_since(start)

        start = time.perf_counter()
        input_h = buffers_h.fft_input()
        input_dh = buffers_dh.fft_input()
        input_th = buffers_th.fft_input()
        timings["zero_padding_time"] += _ms_since(start)

        # The context is shared, so the three transforms run one after another.
        start = time.perf_counter()
        x_h = _run_fft(fft_context, input_h, num_bins)[DC_BINS_TO_SKIP:]
        x_dh = _run_fft(fft_context, input_dh, num_bins)[DC_BINS_TO_SKIP:]
        x_th = _run_fft(fft_context, input_th, num_bins)[DC_BINS_TO_SKIP:]
        timings["fft_time"] += _ms_since(start)

        start = time.perf_counter()
        power = x_h.real * x_h.real + x_h.imag * x_h.imag
        significant = power >= REASSIGNMENT_MIN_POWER
        if not significant.any():
            timings["magnitude_time"] += _ms_since(start)
            continue

        power = power[significant]
        re_h, im_h = x_h.real[significant], x_h.imag[significant]
        re_dh, im_dh = x_dh.real[significant], x_dh.imag[significant]
        re_th, im_th = x_th.real[significant], x_th.imag[significant]

        # Im(X_Dh / X_h) and Re(X_Th / X_h)
        ratio_dh_im = (im_dh * re_h - re_dh * im_h) / power
        ratio_th_re = (re_th * re_h + im_th * im_h) / power

        freq_correction = -ratio_dh_im * freq_correction_factor
        time_correction = ratio_th_re / hop_size

        reassigned_bin, reassigned_frame = _reassigned_coordinates(
            bins[significant], frame, freq_correction, time_correction
        )

        in_bounds = (
            (reassigned_bin >= DC_BINS_TO_SKIP)
            & (reassigned_bin < num_bins)
            & (reassigned_frame >= 0)
            & (reassigned_frame < num_frames)
        )
        if in_bounds.any():
            values = normalize_magnitudes(np.sqrt(power[in_bounds]), norm_factor, gain, range_db)
            np.maximum.at(
                energy,
                (reassigned_frame[in_bounds].astype(np.intp), reassigned_bin[in_bounds].astype(np.intp)),
                values.astype(np.float32),
            )
        timings["magnitude_time"] += _ms_since(start)

    return energy


def _validate(samples: np.ndarray, sample_rate: float, zero_padding: int, range_db: float, algorithm: str, fft_size: int):
    if samples.ndim != 1:
        raise ConfigurationError("samples must be mono (1-D)")
    if not sample_rate or sample_rate <= 0:
        raise ConfigurationError(f"sample_rate must be positive, got {sample_rate}")
    if int(zero_padding) != zero_padding or zero_padding < 1:
        raise ConfigurationError(f"zero_padding must be an integer >= 1, got {zero_padding}")
    if range_db <= 0:
        raise ConfigurationError(f"range must be positive, got {range_db}")
    if algorithm not in ALGORITHM_OPTIONS:
        raise ConfigurationError(f"Unsupported algorithm '{algorithm}'")
    if fft_size // int(zero_padding) < 2:
        raise ConfigurationError(f"zero_padding {zero_padding} leaves no window for FFT size {fft_size}")


def generate_spectrogram(
    samples: Union[np.ndarray, Sequence[float]],
    sample_rate: float,
    fft_context: FFTContext,
    *,
    hop_size: Optional[int] = None,
    window_type: str = "hann",
    zero_padding: int = 1,
    gain: float = DEFAULT_GAIN_DB,
    range_db: float = DEFAULT_RANGE_DB,
    algorithm: str = "standard",
    target_width: Optional[int] = None,
    window_cache: Optional[WindowCache] = None,
) -> SpectrogramData:
    """
    Compute a normalized spectrogram from mono samples.

    Each frame of `fft_size // zero_padding` samples is windowed, zero-padded
    to the context size, transformed and converted to dB re full scale, so a
    0 dBFS sine reads `gain` dB. Values are mapped from [gain - range, gain]
    onto [0, 1]; the first three bins of every frame are always 0.

    With `algorithm="reassignment"` every frame is transformed three times
    (standard, derivative and time-ramped windows) and each bin's value is
    moved to its estimated instantaneous frequency and group delay; cells
    keep the largest value that lands on them.

    Raises ConfigurationError for invalid parameters and
    InsufficientDataError when the audio is shorter than one window.
    """
    samples = np.asarray(samples, dtype=np.float64)
    fft_size = int(fft_context.size)
    _validate(samples, sample_rate, zero_padding, range_db, algorithm, fft_size)

    cache = window_cache if window_cache is not None else DEFAULT_WINDOW_CACHE
    window_size = fft_size // int(zero_padding)
    num_bins = fft_size // 2 + 1
    hop = resolve_hop_size(len(samples), fft_size, window_size, hop_size, target_width)

    num_frames = count_frames(len(samples), window_size, hop)
    if num_frames <= 0:
        raise InsufficientDataError(len(samples), window_size, num_frames)

    timings = dict.fromkeys(
        (
            "fft_time",
            "windowing_time",
            "zero_padding_time",
            "magnitude_time",
            "normalization_time",
            "allocation_time",
            "frame_extraction_time",
        ),
        0.0,
    )

    start = time.perf_counter()
    generator = _generate_reassigned if algorithm == "reassignment" else _generate_standard
    matrix = generator(samples, fft_context, hop, window_size, window_type, gain, range_db, cache, timings)
    matrix.setflags(write=False)
    total_time = _ms_since(start)

    effective_ffts = num_frames * 3 if algorithm == "reassignment" else num_frames
    fft_time = timings["fft_time"]
    ffts_per_second = effective_ffts / fft_time * 1000.0 if fft_time > 0 else 0.0

    logger.debug(
        "Generated %s spectrogram: %d frames x %d bins (hop %d) in %.1f ms",
        algorithm,
        num_frames,
        num_bins,
        hop,
        total_time,
    )

    return SpectrogramData(
        data=matrix,
        num_frames=num_frames,
        num_bins=num_bins,
        fft_size=fft_size,
        window_size=window_size,
        hop_size=hop,
        sample_rate=sample_rate,
        duration=len(samples) / sample_rate,
        timing=SpectrogramTiming(fft_time=fft_time, total_time=total_time, ffts_per_second=ffts_per_second),
        detailed_timing=DetailedTiming(total_time=total_time, ffts_per_second=ffts_per_second, **timings),
        algorithm=algorithm,
        window_type=window_type,
        gain=gain,
        range_db=range_db,
    )


def analyze_frequency_range(spectrogram: SpectrogramData) -> FrequencyRange:
    """
    Suggest a display frequency range from where the energy actually is.

    Bins are averaged over all frames. The noise floor is the median of the
    top quarter of bins; the threshold sits 5% of the way from that floor to
    the peak. Walking outward from the peak bin, the first bin on each side
    at or below the threshold marks the range edge.

    Only the band around the strongest peak is kept: a second, weaker tone
    separated by a quiet gap falls outside the range, and broadband noise can
    collapse to the minimum 500 Hz span around its peak bin. An edge scan
    inward from bin 3 and from Nyquist would instead return the outermost
    bins above the threshold.
    """
    data = np.asarray(spectrogram.data, dtype=np.float64)
    num_bins = spectrogram.num_bins
    nyquist = spectrogram.nyquist

    avg_energy = data.mean(axis=0)
    peak_bin = int(np.argmax(avg_energy))
    max_energy = float(avg_energy[peak_bin])
    if max_energy == 0.0:
        return FrequencyRange(min_freq=20.0, max_freq=nyquist)

    upper = np.sort(avg_energy[int(num_bins * 0.75) :])
    noise_floor = float(upper[len(upper) // 2])
    threshold = noise_floor + (max_energy - noise_floor) * 0.05

    below = avg_energy <= threshold
    floor_bin = min(DC_BINS_TO_SKIP, peak_bin)
    lower_hits = np.flatnonzero(below[floor_bin:peak_bin])
    min_bin = floor_bin + int(lower_hits[-1]) if lower_hits.size else floor_bin
    upper_hits = np.flatnonzero(below[peak_bin + 1 :])
    max_bin = peak_bin + 1 + int(upper_hits[0]) if upper_hits.size else num_bins - 1

    def bin_to_hz(b: int) -> float:
        return b / (num_bins - 1) * nyquist

    min_freq = math.floor(bin_to_hz(min_bin) / 10.0) * 10.0
    max_freq = math.ceil(bin_to_hz(max_bin) / 100.0) * 100.0

    min_freq = max(20.0, min_freq)
    max_freq = min(nyquist, max_freq)
    max_freq = max(min_freq + 500.0, max_freq)
    return FrequencyRange(min_freq=min_freq, max_freq=max_freq)
