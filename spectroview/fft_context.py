from typing import Protocol

import numpy as np

from .errors import ConfigurationError


class FFTContext(Protocol):
    """
    Fixed-size transform the spectrogram engine writes into and reads from.

    Real contexts take `size` samples in the input buffer. Complex contexts take
    `size` interleaved (re, im) pairs. After `run()` the output buffer holds at
    least `size // 2 + 1` interleaved (re, im) pairs. A context is not
    reentrant: one `run()` at a time per instance.
    """

    size: int
    is_real: bool

    def get_input_buffer(self) -> np.ndarray:
        ...

    def get_output_buffer(self) -> np.ndarray:
        ...

    def run(self) -> None:
        ...


def _check_size(size: int) -> int:
    size = int(size)
    if size < 2 or size & (size - 1):
        raise ConfigurationError(f"FFT size must be a power of two >= 2, got {size}")
    return size


class NumpyRealFFT:
    """Real-input FFT backed by numpy.fft.rfft."""

    is_real = True

    def __init__(self, size: int):
        self.size = _check_size(size)
        self._input = np.zeros(self.size, dtype=np.float64)
        self._output = np.zeros(2 * (self.size // 2 + 1), dtype=np.float64)
        # complex128 view over the interleaved output
        self._output_complex = self._output.view(np.complex128)

    def get_input_buffer(self) -> np.ndarray:
        return self._input

    def get_output_buffer(self) -> np.ndarray:
        return self._output

    def run(self) -> None:
        self._output_complex[:] = np.fft.rfft(self._input)


class NumpyComplexFFT:
    """Complex-input FFT backed by numpy.fft.fft."""

    is_real = False

    def __init__(self, size: int):
        self.size = _check_size(size)
        self._input = np.zeros(2 * self.size, dtype=np.float64)
        self._output = np.zeros(2 * self.size, dtype=np.float64)
        self._input_complex = self._input.view(np.complex128)
        self._output_complex = self._output.view(np.complex128)

    def get_input_buffer(self) -> np.ndarray:
        return self._input

    def get_output_buffer(self) -> np.ndarray:
        return self._output

    def run(self) -> None:
        self._output_complex[:] = np.fft.fft(self._input_complex)


def create_fft_context(size: int, real: bool = True) -> FFTContext:
    return NumpyRealFFT(size) if real else NumpyComplexFFT(size)
