import logging
from threading import Lock
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

WINDOW_TYPES = ("hann", "hamming", "blackman", "blackmanHarris", "rectangular")
WINDOW_VARIANTS = ("standard", "derivative", "timeRamped")

# DC gain (sum / N) of each window, used so a full-scale sine reads 0 dB.
WINDOW_COHERENT_GAIN: Dict[str, float] = {
    "hann": 0.5,
    "hamming": 0.54,
    "blackman": 0.42,
    "blackmanHarris": 0.35875,
    "rectangular": 1.0,
}

_BH = (0.35875, 0.48829, 0.14128, 0.01168)

WindowFunction = Callable[[np.ndarray, int], np.ndarray]


def _phase(i: np.ndarray, n: int, k: int = 1) -> np.ndarray:
    return (2.0 * k * np.pi * i) / (n - 1)


def _hann(i, n):
    return 0.5 * (1.0 - np.cos(_phase(i, n)))


def _hamming(i, n):
    return 0.54 - 0.46 * np.cos(_phase(i, n))


def _blackman(i, n):
    return 0.42 - 0.5 * np.cos(_phase(i, n)) + 0.08 * np.cos(_phase(i, n, 2))


def _blackman_harris(i, n):
    a0, a1, a2, a3 = _BH
    return a0 - a1 * np.cos(_phase(i, n)) + a2 * np.cos(_phase(i, n, 2)) - a3 * np.cos(_phase(i, n, 3))


def _rectangular(i, n):
    return np.ones_like(i, dtype=np.float64)


WINDOW_FUNCTIONS: Dict[str, WindowFunction] = {
    "hann": _hann,
    "hamming": _hamming,
    "blackman": _blackman,
    "blackmanHarris": _blackman_harris,
    "rectangular": _rectangular,
}


# d/di of each window above
def _hann_derivative(i, n):
    return (np.pi / (n - 1)) * np.sin(_phase(i, n))


def _hamming_derivative(i, n):
    return 0.46 * ((2.0 * np.pi) / (n - 1)) * np.sin(_phase(i, n))


def _blackman_derivative(i, n):
    return 0.5 * ((2.0 * np.pi) / (n - 1)) * np.sin(_phase(i, n)) - 0.08 * (
        (4.0 * np.pi) / (n - 1)
    ) * np.sin(_phase(i, n, 2))


def _blackman_harris_derivative(i, n):
    _, a1, a2, a3 = _BH
    return (
        a1 * ((2.0 * np.pi) / (n - 1)) * np.sin(_phase(i, n))
        - a2 * ((4.0 * np.pi) / (n - 1)) * np.sin(_phase(i, n, 2))
        + a3 * ((6.0 * np.pi) / (n - 1)) * np.sin(_phase(i, n, 3))
    )


def _rectangular_derivative(i, n):
    return np.zeros_like(i, dtype=np.float64)


WINDOW_DERIVATIVES: Dict[str, WindowFunction] = {
    "hann": _hann_derivative,
    "hamming": _hamming_derivative,
    "blackman": _blackman_derivative,
    "blackmanHarris": _blackman_harris_derivative,
    "rectangular": _rectangular_derivative,
}


def _time_ramped(window: WindowFunction) -> WindowFunction:
    def ramped(i, n):
        return (i - (n - 1) / 2.0) * window(i, n)

    return ramped


WINDOW_TIME_RAMPED: Dict[str, WindowFunction] = {
    name: _time_ramped(fn) for name, fn in WINDOW_FUNCTIONS.items()
}

_VARIANT_TABLES = {
    "standard": WINDOW_FUNCTIONS,
    "derivative": WINDOW_DERIVATIVES,
    "timeRamped": WINDOW_TIME_RAMPED,
}


def coherent_gain(window_type: str) -> float:
    return WINDOW_COHERENT_GAIN.get(window_type, WINDOW_COHERENT_GAIN["hann"])


def compute_window(window_type: str, size: int, variant: str = "standard") -> np.ndarray:
    """Evaluate a window variant at every sample index, without caching."""
    try:
        table = _VARIANT_TABLES[variant]
    except KeyError:
        raise ConfigurationError(f"Unsupported window variant '{variant}'") from None
    if size < 1:
        raise ConfigurationError(f"Window size must be positive, got {size}")
    fn = table.get(window_type, table["hann"])
    if size == 1:
        # (N - 1) denominators vanish; a single-sample window is its centre value.
        return np.array([1.0 if variant == "standard" else 0.0])
    return fn(np.arange(size, dtype=np.float64), size)


class WindowCache:
    """
    Lookup-or-compute store of window coefficients keyed by (type, size, variant).

    The same read-only array is returned for a key until `clear()` is called.
    Instances are independent, so tests can use a fresh cache.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, int, str], np.ndarray] = {}
        self._lock = Lock()

    def get(self, window_type: str, size: int, variant: str = "standard") -> np.ndarray:
        key = (window_type, int(size), variant)
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        coefficients = compute_window(window_type, int(size), variant)
        coefficients.setflags(write=False)
        with self._lock:
            # First writer wins so every caller shares one array.
            cached = self._entries.setdefault(key, coefficients)
        logger.debug("Computed %s window (%s) of size %d", window_type, variant, size)
        return cached

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key) -> bool:
        return key in self._entries


DEFAULT_WINDOW_CACHE = WindowCache()


def get_window_coefficients(window_type: str, size: int, variant: str = "standard") -> np.ndarray:
    return DEFAULT_WINDOW_CACHE.get(window_type, size, variant)


def clear_window_cache() -> None:
    DEFAULT_WINDOW_CACHE.clear()


def apply_window_coefficients(
    frame: np.ndarray, coefficients: np.ndarray, out: Optional[np.ndarray] = None
) -> np.ndarray:
    """
    Multiply `frame` by `coefficients` element-wise.

    When `out` is given, its first `len(frame)` elements are overwritten and the
    same view is returned; otherwise a new array is allocated.
    """
    n = len(frame)
    if out is None:
        return np.multiply(frame, coefficients[:n])
    target = out[:n]
    np.multiply(frame, coefficients[:n], out=target)
    return target


def apply_window(frame: np.ndarray, window_type: str = "hann") -> np.ndarray:
    return np.asarray(frame, dtype=np.float64) * compute_window(window_type, len(frame))


def zero_pad(frame: np.ndarray, target_size: int) -> np.ndarray:
    if len(frame) >= target_size:
        return frame
    padded = np.zeros(target_size, dtype=np.result_type(frame, np.float32))
    padded[: len(frame)] = frame
    return padded
