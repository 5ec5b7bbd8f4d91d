from typing import Iterable, Optional, Tuple

from .errors import ConfigurationError


def hz_per_bin(sample_rate: float, fft_size: int) -> float:
    return float(sample_rate) / float(fft_size)


def ms_per_hop(hop_size: int, sample_rate: float) -> float:
    return 1000.0 * float(hop_size) / float(sample_rate)


def clamp_frequency_range(fmin: float, fmax: Optional[float], sample_rate: float) -> Tuple[float, float]:
    nyquist = float(sample_rate) / 2.0
    low = max(1.0, float(fmin))
    high = nyquist if fmax is None else min(float(fmax), nyquist)
    if low >= high:
        raise ConfigurationError(f"min frequency {fmin} must be lower than max frequency {fmax} and Nyquist {nyquist}")
    return low, high


def format_seconds(seconds: float) -> str:
    if seconds >= 60:
        minutes = int(seconds // 60)
        remainder = seconds % 60
        return f"{minutes:d}m {remainder:.1f}s"
    return f"{seconds:.2f}s"


def validate_choice(name: str, allowed: Iterable[str], kind: str = "option") -> str:
    """Case-insensitive membership check returning the canonical spelling."""
    by_lower = {option.lower(): option for option in allowed}
    try:
        return by_lower[str(name).lower()]
    except KeyError:
        raise ConfigurationError(f"Unsupported {kind} '{name}'") from None
