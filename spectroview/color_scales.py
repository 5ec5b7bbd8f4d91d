import logging
from threading import Lock
from typing import Callable, Dict, Tuple

import numpy as np

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]
ColorScaleFunction = Callable[[float], RGB]

COLOR_LUT_SIZE = 256
DEFAULT_COLOR_SCALE = "magma"


def _channel(value: float) -> int:
    return int(max(0, min(255, np.floor(255 * value))))


def viridis(t: float) -> RGB:
    return (
        _channel(0.267 + 0.329 * t + 2.66 * t * t - 2.35 * t * t * t),
        _channel(0.004 + 1.42 * t - 1.54 * t * t + 0.69 * t * t * t),
        _channel(0.329 + 1.42 * t - 2.49 * t * t + 1.33 * t * t * t),
    )


def magma(t: float) -> RGB:
    """
    Audacity-like default palette.

    Black -> dark blue -> magenta -> orange -> white over four equal quartiles
    of t (with gain 20 / range 80: -100..-80, -80..-60, -60..-40, -40..-20 dB).
    """
    if t < 0.25:
        s = t / 0.25
        return int(3 * s), int(3 * s), int(80 * s)
    if t < 0.5:
        s = (t - 0.25) / 0.25
        return int(3 + 177 * s), int(3 - 3 * s), int(80 + 100 * s)
    if t < 0.75:
        s = (t - 0.5) / 0.25
        return int(180 + 75 * s), int(140 * s), int(180 - 180 * s)
    s = (t - 0.75) / 0.25
    return 255, int(140 + 115 * s), int(255 * s)


def grayscale(t: float) -> RGB:
    v = int(np.floor(255 * t))
    return v, v, v


def hot(t: float) -> RGB:
    # black -> red -> yellow -> white
    if t < 0.33:
        return int(255 * (t / 0.33)), 0, 0
    if t < 0.67:
        return 255, int(255 * ((t - 0.33) / 0.34)), 0
    return 255, 255, int(255 * ((t - 0.67) / 0.33))


def inferno(t: float) -> RGB:
    # black -> purple -> red -> orange -> yellow
    if t < 0.15:
        s = t / 0.15
        return int(10 + 50 * s), 0, int(20 + 60 * s)
    if t < 0.4:
        s = (t - 0.15) / 0.25
        return int(60 + 120 * s), int(20 * s), int(80 + 40 * s)
    if t < 0.65:
        s = (t - 0.4) / 0.25
        return int(180 + 60 * s), int(20 + 60 * s), int(120 - 100 * s)
    if t < 0.85:
        s = (t - 0.65) / 0.2
        return 255, int(80 + 120 * s), int(20 - 20 * s)
    s = (t - 0.85) / 0.15
    return 255, int(200 + 55 * s), int(100 * s)


COLOR_SCALES: Dict[str, ColorScaleFunction] = {
    "viridis": viridis,
    "magma": magma,
    "grayscale": grayscale,
    "hot": hot,
    "inferno": inferno,
}


def build_color_lut(name: str) -> np.ndarray:
    """Sample a color scale at COLOR_LUT_SIZE evenly spaced points."""
    color_fn = COLOR_SCALES.get(name, COLOR_SCALES[DEFAULT_COLOR_SCALE])
    lut = np.empty((COLOR_LUT_SIZE, 3), dtype=np.uint8)
    for i in range(COLOR_LUT_SIZE):
        lut[i] = color_fn(i / (COLOR_LUT_SIZE - 1))
    return lut


class ColorLUTCache:
    """Lookup-or-build store of read-only (256, 3) uint8 color tables."""

    def __init__(self):
        self._tables: Dict[str, np.ndarray] = {}
        self._lock = Lock()

    def get(self, name: str) -> np.ndarray:
        key = name if name in COLOR_SCALES else DEFAULT_COLOR_SCALE
        lut = self._tables.get(key)
        if lut is not None:
            return lut
        lut = build_color_lut(key)
        lut.setflags(write=False)
        with self._lock:
            lut = self._tables.setdefault(key, lut)
        logger.debug("Built color LUT for %s", key)
        return lut

    def clear(self) -> None:
        with self._lock:
            self._tables.clear()

    def __len__(self) -> int:
        return len(self._tables)


DEFAULT_COLOR_LUT_CACHE = ColorLUTCache()


def get_color_lut(name: str) -> np.ndarray:
    return DEFAULT_COLOR_LUT_CACHE.get(name)


def clear_color_lut_cache() -> None:
    DEFAULT_COLOR_LUT_CACHE.clear()


def lut_indices(values: np.ndarray) -> np.ndarray:
    """Round clamped [0, 1] intensities to LUT rows (round half up)."""
    clamped = np.clip(values, 0.0, 1.0)
    return np.floor(clamped * (COLOR_LUT_SIZE - 1) + 0.5).astype(np.intp)


def lookup_colors(values: np.ndarray, lut: np.ndarray) -> np.ndarray:
    return lut[lut_indices(values)]
