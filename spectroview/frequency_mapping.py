from typing import Optional

import numpy as np

from .errors import ConfigurationError

FREQUENCY_SCALES = ("linear", "log", "mel", "bark", "erb")
DEFAULT_MIN_FREQ = 20.0


def hz_to_mel(hz):
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def mel_to_hz(mel):
    return 700.0 * (np.power(10.0, np.asarray(mel, dtype=np.float64) / 2595.0) - 1.0)


def hz_to_bark(hz):
    """Bark scale, a psychoacoustic scale of critical bands."""
    hz = np.asarray(hz, dtype=np.float64)
    return 13.0 * np.arctan(0.00076 * hz) + 3.5 * np.arctan(np.square(hz / 7500.0))


def _bark_derivative(hz: float) -> float:
    return (13.0 * 0.00076) / (1.0 + (0.00076 * hz) ** 2) + (3.5 * 2.0 * (hz / 7500.0)) / (
        7500.0 * (1.0 + (hz / 7500.0) ** 4)
    )


def _bark_to_hz_scalar(bark: float) -> float:
    hz = bark * 100.0
    for _ in range(10):
        error = bark - float(hz_to_bark(hz))
        if abs(error) < 0.001:
            break
        hz += error / _bark_derivative(hz)
    return max(1.0, hz)


def bark_to_hz(bark):
    """Invert `hz_to_bark` with Newton-Raphson; results are floored at 1 Hz."""
    if np.ndim(bark) == 0:
        return _bark_to_hz_scalar(float(bark))
    values = np.asarray(bark, dtype=np.float64)
    return np.array([_bark_to_hz_scalar(v) for v in values.ravel()]).reshape(values.shape)


def hz_to_erb(hz):
    """ERB-rate scale (equivalent rectangular bandwidth of auditory filters)."""
    return 21.4 * np.log10(1.0 + 0.00437 * np.asarray(hz, dtype=np.float64))


def erb_to_hz(erb):
    return (np.power(10.0, np.asarray(erb, dtype=np.float64) / 21.4) - 1.0) / 0.00437


_SCALE_CONVERSIONS = {
    "linear": (lambda hz: np.asarray(hz, dtype=np.float64), lambda v: np.asarray(v, dtype=np.float64)),
    "log": (np.log10, lambda v: np.power(10.0, v)),
    "mel": (hz_to_mel, mel_to_hz),
    "bark": (hz_to_bark, bark_to_hz),
    "erb": (hz_to_erb, erb_to_hz),
}


def effective_frequency_range(sample_rate: float, min_freq: Optional[float], max_freq: Optional[float]):
    nyquist = sample_rate / 2.0
    low = max(DEFAULT_MIN_FREQ if min_freq is None else float(min_freq), 1.0)
    high = min(nyquist if max_freq is None else float(max_freq), nyquist)
    return low, high


def create_frequency_mapping(
    num_bins: int,
    sample_rate: float,
    scale: str,
    display_bins: int,
    min_freq: Optional[float] = None,
    max_freq: Optional[float] = None,
) -> np.ndarray:
    """
    Map each display bin to a fractional source bin.

    Display bins are evenly spaced in the target scale between the
    transformed min and max frequencies, then converted back to Hz and to a
    source-bin coordinate `hz / nyquist * (num_bins - 1)`.
    """
    try:
        forward, inverse = _SCALE_CONVERSIONS[scale]
    except KeyError:
        raise ConfigurationError(f"Unsupported frequency scale '{scale}'") from None
    if display_bins < 1:
        raise ConfigurationError(f"display_bins must be positive, got {display_bins}")

    nyquist = sample_rate / 2.0
    low, high = effective_frequency_range(sample_rate, min_freq, max_freq)

    if display_bins == 1:
        positions = np.zeros(1)
    else:
        positions = np.arange(display_bins, dtype=np.float64) / (display_bins - 1)
    lo_scaled = float(forward(low))
    hi_scaled = float(forward(high))
    hz = inverse(lo_scaled + positions * (hi_scaled - lo_scaled))
    return np.asarray(hz, dtype=np.float64) / nyquist * (num_bins - 1)


def mapping_to_hz(mapping: np.ndarray, num_bins: int, sample_rate: float) -> np.ndarray:
    return np.asarray(mapping, dtype=np.float64) / (num_bins - 1) * (sample_rate / 2.0)


def remap_spectrum(spectrum: np.ndarray, mapping: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Linear-interpolation remap without downsampling.

    Works on a single spectrum or a (frames x bins) matrix. `out`, when given,
    must have shape `spectrum.shape[:-1] + (len(mapping),)` and is fully
    overwritten.
    """
    spectrum = np.asarray(spectrum)
    last = spectrum.shape[-1] - 1
    bin_low = np.clip(np.floor(mapping).astype(np.intp), 0, last)
    bin_high = np.minimum(bin_low + 1, last)
    frac = mapping - np.floor(mapping)
    result = spectrum[..., bin_low] * (1.0 - frac) + spectrum[..., bin_high] * frac
    if out is None:
        return result
    out[...] = result
    return out
