class SpectrogramError(Exception):
    """Base class for errors raised by spectroview."""


class ConfigurationError(SpectrogramError, ValueError):
    """Raised when a required parameter is missing or invalid."""


class InsufficientDataError(SpectrogramError):
    """Raised when the audio is shorter than one analysis window."""

    def __init__(self, num_samples: int, window_size: int, num_frames: int):
        self.num_samples = num_samples
        self.window_size = window_size
        self.num_frames = num_frames
        super().__init__(
            f"Audio too short for the given FFT size: {num_samples} samples, "
            f"window {window_size}, {num_frames} frame(s)"
        )
