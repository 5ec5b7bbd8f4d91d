"""
Batch harness: render spectrogram PNGs for every audio file in a directory.

This script:
- loads the JSON config (spectroview/spectrogram_config.json by default)
- processes all supported audio files in input_directory
- saves spectrogram PNGs to output_directory

Usage: python -m spectroview.generate_spectrograms [config.json] [--verbose]

Defaults are tuned to resemble Audacity's spectrogram view.
"""
import json
import logging
import sys
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, List, Optional

from .audio_loader import is_supported_file, load_audio
from .config import (
    ALGORITHM_OPTIONS,
    COLOR_SCALE_OPTIONS,
    DOWNSAMPLE_OPTIONS,
    FREQUENCY_SCALE_OPTIONS,
    INTERPOLATION_OPTIONS,
    NFFT_OPTIONS,
    WINDOW_OPTIONS,
)
from .errors import ConfigurationError
from .fft_context import create_fft_context
from .renderer import encode_png, render_figure, render_to_image, save_png
from .spectrogram_engine import analyze_frequency_range, generate_spectrogram
from .utils import format_seconds, hz_per_bin, ms_per_hop, validate_choice

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent
CONFIG_PATH = PACKAGE_ROOT / "spectrogram_config.json"


@dataclass
class HarnessConfig:
    input_directory: Path
    output_directory: Path

    # Audio
    sample_rate: Optional[int] = None  # resample target; None keeps the file rate
    channel: Optional[int] = None  # None averages all channels
    max_duration_sec: Optional[float] = None

    # Analysis
    fft_size: int = 512
    overlap: float = 0.85  # hop = fft_size * (1 - overlap) unless hop_size is set
    hop_size: Optional[int] = None
    window: str = "hann"
    zero_padding: int = 1
    algorithm: str = "standard"
    gain: float = 25.0
    range_db: float = 80.0

    # Rendering
    color_scale: str = "magma"
    freq_scale: str = "log"
    min_freq: float = 20.0
    max_freq: Optional[float] = None  # None = half of Nyquist
    auto_frequency_range: bool = False
    frequency_gain: float = 0.0
    downsample_mode: str = "max"
    interpolation: str = "cubic"
    output_width: Optional[int] = 1000
    output_height: Optional[int] = 500
    annotate: bool = False
    dpi: int = 140

    def __post_init__(self):
        if self.fft_size not in NFFT_OPTIONS:
            raise ConfigurationError(f"fft_size must be one of {NFFT_OPTIONS}, got {self.fft_size}")
        self.window = validate_choice(self.window, WINDOW_OPTIONS, "window")
        self.algorithm = validate_choice(self.algorithm, ALGORITHM_OPTIONS, "algorithm")
        self.color_scale = validate_choice(self.color_scale, COLOR_SCALE_OPTIONS, "color scale")
        self.freq_scale = validate_choice(self.freq_scale, FREQUENCY_SCALE_OPTIONS, "frequency scale")
        self.downsample_mode = validate_choice(self.downsample_mode, DOWNSAMPLE_OPTIONS, "downsample mode")
        self.interpolation = validate_choice(self.interpolation, INTERPOLATION_OPTIONS, "interpolation")

    @property
    def effective_hop_size(self) -> int:
        if self.hop_size:
            return int(self.hop_size)
        return max(1, int(self.fft_size * (1.0 - self.overlap)))

    @classmethod
    def from_dict(cls, data: Dict) -> "HarnessConfig":
        def _resolve(path_value: str) -> Path:
            path_obj = Path(path_value)
            return path_obj if path_obj.is_absolute() else (PROJECT_ROOT / path_obj)

        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(sorted(unknown)))
        values = {key: (None if value == "" else value) for key, value in data.items() if key in known}
        values["input_directory"] = _resolve(data["input_directory"])
        values["output_directory"] = _resolve(data["output_directory"])
        return cls(**values)

    def to_dict(self) -> Dict:
        def _relativize(path: Path) -> str:
            try:
                return str(path.relative_to(PROJECT_ROOT))
            except ValueError:
                return str(path)

        data = asdict(self)
        data["input_directory"] = _relativize(self.input_directory)
        data["output_directory"] = _relativize(self.output_directory)
        return data


def load_config(config_path: Path = CONFIG_PATH) -> HarnessConfig:
    with Path(config_path).open("r", encoding="utf-8") as f:
        raw = json.load(f)
    cfg = HarnessConfig.from_dict(raw)
    cfg.output_directory.mkdir(parents=True, exist_ok=True)
    return cfg


def save_config(config: HarnessConfig, config_path: Path = CONFIG_PATH) -> None:
    with Path(config_path).open("w", encoding="utf-8") as f:
        json.dump(config.to_dict(), f, indent=2)


def generate_spectrogram_png(audio_path: Path, cfg: HarnessConfig, output_dir: Optional[Path] = None) -> Path:
    """Render one audio file to `<stem>_spectrogram.png` and return the path."""
    output_dir = Path(output_dir or cfg.output_directory)
    samples, sample_rate = load_audio(
        audio_path,
        target_sample_rate=cfg.sample_rate,
        channel=cfg.channel,
        max_duration_sec=cfg.max_duration_sec,
    )

    spectrogram = generate_spectrogram(
        samples,
        sample_rate,
        create_fft_context(cfg.fft_size),
        hop_size=cfg.effective_hop_size,
        window_type=cfg.window,
        zero_padding=cfg.zero_padding,
        gain=cfg.gain,
        range_db=cfg.range_db,
        algorithm=cfg.algorithm,
    )
    logger.info(
        "%s: %s, %d frames x %d bins (%.2f Hz/bin, %.2f ms/hop), FFT %.1f ms",
        audio_path.name,
        format_seconds(spectrogram.duration),
        spectrogram.num_frames,
        spectrogram.num_bins,
        hz_per_bin(sample_rate, spectrogram.fft_size),
        ms_per_hop(spectrogram.hop_size, sample_rate),
        spectrogram.timing.fft_time,
    )

    nyquist = sample_rate / 2.0
    if cfg.auto_frequency_range:
        detected = analyze_frequency_range(spectrogram)
        min_freq, max_freq = detected.min_freq, detected.max_freq
    else:
        min_freq = cfg.min_freq
        max_freq = cfg.max_freq if cfg.max_freq is not None else min(nyquist, round(nyquist / 2.0))

    result = render_to_image(
        spectrogram,
        color_scale=cfg.color_scale,
        freq_scale=cfg.freq_scale,
        min_freq=min_freq,
        max_freq=max_freq,
        frequency_gain=cfg.frequency_gain,
        range_db=cfg.range_db,
        downsample_mode=cfg.downsample_mode,
        interpolation=cfg.interpolation,
        output_width=cfg.output_width,
        output_height=cfg.output_height,
    )

    if cfg.annotate:
        png_bytes = render_figure(
            result,
            spectrogram,
            color_scale=cfg.color_scale,
            freq_scale=cfg.freq_scale,
            min_freq=min_freq,
            max_freq=max_freq,
            title=audio_path.stem,
            dpi=cfg.dpi,
        )
    else:
        png_bytes = encode_png(result)

    return save_png(png_bytes, output_dir / f"{audio_path.stem}_spectrogram.png")


def generate_for_directory(input_dir: Path, output_dir: Path, cfg: HarnessConfig) -> List[Path]:
    audio_files = sorted(p for p in Path(input_dir).iterdir() if p.is_file() and is_supported_file(p))
    return [generate_spectrogram_png(path, cfg, output_dir=output_dir) for path in audio_files]


def run_harness(config_path: Path = CONFIG_PATH) -> List[Path]:
    """Load JSON config and generate spectrograms for every audio file in input_directory."""
    cfg = load_config(config_path)
    return generate_for_directory(cfg.input_directory, cfg.output_directory, cfg)


def main():
    args = sys.argv[1:]
    if "--verbose" in args:
        args.remove("--verbose")
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    config_path = Path(args[0]) if args else CONFIG_PATH
    cfg = load_config(config_path)

    if not cfg.input_directory.is_dir():
        print(f"Input directory {cfg.input_directory} does not exist")
        return

    audio_files = sorted(p for p in cfg.input_directory.iterdir() if p.is_file() and is_supported_file(p))
    if not audio_files:
        print(f"No audio files found in {cfg.input_directory}")
        return

    for path in audio_files:
        print(f"Processing {path.name}...")
        generate_spectrogram_png(path, cfg)

    print(f"Done. Spectrograms in {cfg.output_directory}")


if __name__ == "__main__":
    main()
