"""
Spectrogram generation and rendering.

Audio samples go through `spectrogram_engine.generate_spectrogram` to produce a
normalized (frame x bin) matrix, which `renderer.render_to_image` turns into an
RGBA pixel buffer. The FFT itself is supplied by the caller through an
`fft_context.FFTContext`; decoding and PNG encoding live at the edges.
"""
from spectroview.errors import ConfigurationError, InsufficientDataError, SpectrogramError
from spectroview.fft_context import FFTContext, NumpyComplexFFT, NumpyRealFFT, create_fft_context
from spectroview.renderer import RenderResult, render_to_image
from spectroview.spectrogram_engine import (
    FrequencyRange,
    SpectrogramData,
    analyze_frequency_range,
    generate_spectrogram,
)

__all__ = [
    "ConfigurationError",
    "FFTContext",
    "FrequencyRange",
    "InsufficientDataError",
    "NumpyComplexFFT",
    "NumpyRealFFT",
    "RenderResult",
    "SpectrogramData",
    "SpectrogramError",
    "analyze_frequency_range",
    "create_fft_context",
    "generate_spectrogram",
    "render_to_image",
]
