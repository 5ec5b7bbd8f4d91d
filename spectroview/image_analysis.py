"""
Image metrics for comparing rendered spectrograms against reference screenshots.

All functions take (height, width, 3 or 4) uint8 arrays, e.g. the pixels of a
`renderer.RenderResult` or a PNG opened with `load_image`.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Union

import numpy as np
from PIL import Image

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])
EDGE_THRESHOLD = 30.0
BLOCK_EDGE_THRESHOLD = 10.0
BLOCK_SIZES = (4, 8, 16)
SSIM_WINDOW = 8
SSIM_C1 = (0.01 * 255) ** 2
SSIM_C2 = (0.03 * 255) ** 2


@dataclass(frozen=True)
class ColorAnalysis:
    average_color: tuple
    average_hsl: tuple
    warmth: float
    saturation: float
    brightness: float
    dominant_hue: float
    histogram: Dict[str, np.ndarray]


@dataclass(frozen=True)
class PixelatednessAnalysis:
    laplacian_variance: float
    average_gradient: float
    edge_density: float
    blockiness: float
    smoothness: float


@dataclass(frozen=True)
class LikenessAnalysis:
    mse: float
    psnr: float
    ssim: float
    histogram_similarity: float
    likeness: float


def load_image(path: Union[str, Path]) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGBA"))


def _rgb(pixels: np.ndarray) -> np.ndarray:
    pixels = np.asarray(pixels)
    if pixels.ndim != 3 or pixels.shape[2] < 3:
        raise ValueError(f"Expected (height, width, 3|4) pixels, got shape {pixels.shape}")
    return pixels[..., :3].astype(np.float64)


def _luminance(pixels: np.ndarray) -> np.ndarray:
    return _rgb(pixels) @ LUMA_WEIGHTS


def rgb_to_hsl(rgb: np.ndarray):
    """Vectorised RGB (0-255) to HSL with hue in degrees and s, l in [0, 1]."""
    rgb = np.asarray(rgb, dtype=np.float64) / 255.0
    r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    mx = rgb.max(axis=-1)
    mn = rgb.min(axis=-1)
    lightness = (mx + mn) / 2.0
    delta = mx - mn
    grey = delta == 0
    safe_delta = np.where(grey, 1.0, delta)

    denominator = np.where(lightness > 0.5, 2.0 - mx - mn, mx + mn)
    saturation = np.where(grey, 0.0, delta / np.where(denominator == 0, 1.0, denominator))

    hue = np.select(
        [grey, mx == r, mx == g],
        [
            0.0,
            ((g - b) / safe_delta + np.where(g < b, 6.0, 0.0)) / 6.0,
            ((b - r) / safe_delta + 2.0) / 6.0,
        ],
        default=((r - g) / safe_delta + 4.0) / 6.0,
    )
    return hue * 360.0, saturation, lightness


def analyze_colors(pixels: np.ndarray) -> ColorAnalysis:
    rgb = _rgb(pixels).reshape(-1, 3)
    channels = rgb.astype(np.intp)
    hue, saturation, lightness = rgb_to_hsl(rgb)

    average = rgb.mean(axis=0)
    mean_saturation = float(saturation.mean())
    # positive = warm (red/orange), negative = cool (blue), scaled by saturation
    warmth = float((average[0] - average[2]) / 255.0 * mean_saturation)

    saturated = saturation > 0.1
    hue_buckets = np.bincount((hue[saturated] // 10).astype(np.intp) % 36, minlength=36)
    dominant_hue = float(np.argmax(hue_buckets) * 10 + 5)

    return ColorAnalysis(
        average_color=tuple(float(v) for v in average),
        average_hsl=(float(hue.mean()), mean_saturation, float(lightness.mean())),
        warmth=warmth,
        saturation=mean_saturation,
        brightness=float(lightness.mean()),
        dominant_hue=dominant_hue,
        histogram={
            name: np.bincount(channels[:, i], minlength=256) for i, name in enumerate(("r", "g", "b"))
        },
    )


def _block_edge_ratio(gray: np.ndarray, block_size: int) -> float:
    height, width = gray.shape
    aligned = 0
    checks = 0
    columns = np.arange(block_size, width - 1, block_size)
    if columns.size and height > 2:
        diffs = np.abs(gray[1:-1, columns] - gray[1:-1, columns - 1])
        aligned += int((diffs > BLOCK_EDGE_THRESHOLD).sum())
        checks += diffs.size
    rows = np.arange(block_size, height - 1, block_size)
    if rows.size and width > 2:
        diffs = np.abs(gray[rows, 1:-1] - gray[rows - 1, 1:-1])
        aligned += int((diffs > BLOCK_EDGE_THRESHOLD).sum())
        checks += diffs.size
    return aligned / checks if checks else 0.0


def analyze_pixelatedness(pixels: np.ndarray) -> PixelatednessAnalysis:
    gray = _luminance(pixels)
    if gray.shape[0] < 3 or gray.shape[1] < 3:
        raise ValueError("Image must be at least 3x3 pixels")

    centre = gray[1:-1, 1:-1]
    laplacian = gray[:-2, 1:-1] + gray[2:, 1:-1] + gray[1:-1, :-2] + gray[1:-1, 2:] - 4.0 * centre
    laplacian_variance = float(np.mean(laplacian**2) - np.mean(laplacian) ** 2)

    gx = gray[1:-1, 2:] - gray[1:-1, :-2]
    gy = gray[2:, 1:-1] - gray[:-2, 1:-1]
    gradient = np.hypot(gx, gy)

    blockiness = max(_block_edge_ratio(gray, size) for size in BLOCK_SIZES)

    return PixelatednessAnalysis(
        laplacian_variance=laplacian_variance,
        average_gradient=float(gradient.mean()),
        edge_density=float((gradient > EDGE_THRESHOLD).mean()),
        blockiness=blockiness,
        smoothness=1.0 / (1.0 + laplacian_variance / 1000.0),
    )


def resize_nearest(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
    src_height, src_width = pixels.shape[:2]
    if (src_width, src_height) == (width, height):
        return pixels
    resized = Image.fromarray(pixels).resize((width, height), Image.NEAREST)
    return np.asarray(resized)


def calculate_ssim(pixels_a: np.ndarray, pixels_b: np.ndarray) -> float:
    """Mean SSIM over non-overlapping 8x8 luminance blocks; 0 when no block fits."""
    luma_a = _luminance(pixels_a)
    luma_b = _luminance(pixels_b)
    height, width = luma_a.shape
    rows = len(range(0, height - SSIM_WINDOW, SSIM_WINDOW))
    cols = len(range(0, width - SSIM_WINDOW, SSIM_WINDOW))
    if rows == 0 or cols == 0:
        return 0.0

    def blocks(luma):
        return luma[: rows * SSIM_WINDOW, : cols * SSIM_WINDOW].reshape(rows, SSIM_WINDOW, cols, SSIM_WINDOW)

    a = blocks(luma_a)
    b = blocks(luma_b)
    mean_a = a.mean(axis=(1, 3))
    mean_b = b.mean(axis=(1, 3))
    var_a = (a * a).mean(axis=(1, 3)) - mean_a * mean_a
    var_b = (b * b).mean(axis=(1, 3)) - mean_b * mean_b
    covar = (a * b).mean(axis=(1, 3)) - mean_a * mean_b

    ssim = ((2 * mean_a * mean_b + SSIM_C1) * (2 * covar + SSIM_C2)) / (
        (mean_a * mean_a + mean_b * mean_b + SSIM_C1) * (var_a + var_b + SSIM_C2)
    )
    return float(ssim.mean())


def histogram_intersection(hist_a: np.ndarray, hist_b: np.ndarray) -> float:
    total = max(int(hist_a.sum()), int(hist_b.sum()))
    if total == 0:
        return 0.0
    return float(np.minimum(hist_a, hist_b).sum() / total)


def compare_images(pixels_a: np.ndarray, pixels_b: np.ndarray) -> LikenessAnalysis:
    """Similarity of two images after nearest-resizing both to the smaller size."""
    width = min(pixels_a.shape[1], pixels_b.shape[1])
    height = min(pixels_a.shape[0], pixels_b.shape[0])
    a = resize_nearest(pixels_a, width, height)
    b = resize_nearest(pixels_b, width, height)

    diff = _rgb(a) - _rgb(b)
    mse = float(np.mean(np.sum(diff * diff, axis=-1) / 3.0))
    psnr = 10.0 * np.log10((255.0 * 255.0) / mse) if mse > 0 else 100.0

    ssim = calculate_ssim(a, b)
    hist_a = analyze_colors(a).histogram
    hist_b = analyze_colors(b).histogram
    histogram_similarity = float(
        np.mean([histogram_intersection(hist_a[c], hist_b[c]) for c in ("r", "g", "b")])
    )

    likeness = 0.4 * ssim + 0.3 * min(psnr / 50.0, 1.0) + 0.3 * histogram_similarity
    return LikenessAnalysis(
        mse=mse,
        psnr=float(psnr),
        ssim=ssim,
        histogram_similarity=histogram_similarity,
        likeness=float(likeness),
    )


def hue_name(hue: float) -> str:
    if hue < 15 or hue >= 345:
        return "red"
    if hue < 45:
        return "orange"
    if hue < 75:
        return "yellow"
    if hue < 165:
        return "green"
    if hue < 195:
        return "cyan"
    if hue < 255:
        return "blue"
    if hue < 285:
        return "purple"
    return "magenta"


def format_comparison(comparison: LikenessAnalysis) -> str:
    return "\n".join(
        (
            f"MSE: {comparison.mse:.2f}",
            f"PSNR: {comparison.psnr:.2f} dB",
            f"SSIM: {comparison.ssim:.4f}",
            f"Histogram similarity: {comparison.histogram_similarity * 100:.1f}%",
            f"Overall likeness: {comparison.likeness * 100:.1f}%",
        )
    )
