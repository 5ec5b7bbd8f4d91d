from dataclasses import asdict, dataclass
from typing import Optional

NFFT_OPTIONS = (256, 512, 1024, 2048, 4096, 8192)
WINDOW_OPTIONS = ("hann", "hamming", "blackman", "blackmanHarris", "rectangular")
ALGORITHM_OPTIONS = ("standard", "reassignment")
FREQUENCY_SCALE_OPTIONS = ("linear", "log", "mel", "bark", "erb")
COLOR_SCALE_OPTIONS = ("magma", "viridis", "inferno", "hot", "grayscale")
DOWNSAMPLE_OPTIONS = ("max", "average", "nearest")
INTERPOLATION_OPTIONS = ("nearest", "linear", "cubic")

DEFAULT_WINDOW = WINDOW_OPTIONS[0]
DEFAULT_ALGORITHM = ALGORITHM_OPTIONS[0]
DEFAULT_ZERO_PADDING = 1
DEFAULT_GAIN_DB = 0.0
DEFAULT_RANGE_DB = 80.0

DEFAULT_FREQ_SCALE = "log"
DEFAULT_CMAP = "magma"
DEFAULT_DOWNSAMPLE = DOWNSAMPLE_OPTIONS[0]
DEFAULT_INTERPOLATION = "linear"
DEFAULT_FMIN = 50.0
DEFAULT_FMAX = 8000.0
DEFAULT_FREQUENCY_GAIN = 0.0

# Renderer boost above this frequency, in dB per decade.
FREQUENCY_GAIN_PIVOT_HZ = 1000.0
# dB -> [0, 1] intensity divisor for the frequency boost. Fixed, not derived from range.
FREQUENCY_GAIN_DB_SCALE = 40.0

DC_BINS_TO_SKIP = 3
MAGNITUDE_EPSILON = 1e-10
REASSIGNMENT_MIN_POWER = 1e-20


@dataclass(frozen=True)
class SpectrogramParams:
    hop_size: Optional[int] = None
    window_type: str = DEFAULT_WINDOW
    zero_padding: int = DEFAULT_ZERO_PADDING
    gain: float = DEFAULT_GAIN_DB
    range_db: float = DEFAULT_RANGE_DB
    algorithm: str = DEFAULT_ALGORITHM
    target_width: Optional[int] = None

    def as_kwargs(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class RenderParams:
    color_scale: str = DEFAULT_CMAP
    freq_scale: str = DEFAULT_FREQ_SCALE
    min_freq: float = DEFAULT_FMIN
    max_freq: float = DEFAULT_FMAX
    frequency_gain: float = DEFAULT_FREQUENCY_GAIN
    range_db: Optional[float] = None
    downsample_mode: str = DEFAULT_DOWNSAMPLE
    interpolation: str = DEFAULT_INTERPOLATION
    output_width: Optional[int] = None
    output_height: Optional[int] = None

    def as_kwargs(self) -> dict:
        return asdict(self)
