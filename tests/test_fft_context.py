import numpy as np
import pytest

from spectroview.errors import ConfigurationError
from spectroview.fft_context import NumpyComplexFFT, NumpyRealFFT, create_fft_context


@pytest.mark.parametrize("size", [0, 1, 3, 1000])
def test_non_power_of_two_raises(size):
    with pytest.raises(ConfigurationError):
        create_fft_context(size)
    with pytest.raises(ConfigurationError):
        create_fft_context(size, real=False)


def test_factory_picks_context_kind():
    assert isinstance(create_fft_context(64), NumpyRealFFT)
    assert isinstance(create_fft_context(64, real=False), NumpyComplexFFT)


def test_buffer_sizes():
    real = create_fft_context(16)
    assert real.is_real
    assert len(real.get_input_buffer()) == 16
    assert len(real.get_output_buffer()) >= 2 * 9

    complex_ctx = create_fft_context(16, real=False)
    assert not complex_ctx.is_real
    assert len(complex_ctx.get_input_buffer()) == 32
    assert len(complex_ctx.get_output_buffer()) >= 2 * 9


def test_real_and_complex_contexts_agree():
    size = 64
    rng = np.random.default_rng(3)
    frame = rng.standard_normal(size)

    real = create_fft_context(size)
    real.get_input_buffer()[:] = frame
    real.run()

    complex_ctx = create_fft_context(size, real=False)
    buf = complex_ctx.get_input_buffer()
    buf[0::2] = frame
    buf[1::2] = 0.0
    complex_ctx.run()

    count = 2 * (size // 2 + 1)
    assert np.allclose(real.get_output_buffer()[:count], complex_ctx.get_output_buffer()[:count])
    expected = np.fft.rfft(frame)
    assert np.allclose(real.get_output_buffer()[0:count:2], expected.real)
    assert np.allclose(real.get_output_buffer()[1:count:2], expected.imag)


def test_impulse_has_flat_spectrum():
    ctx = create_fft_context(32)
    buf = ctx.get_input_buffer()
    buf[:] = 0.0
    buf[0] = 1.0
    ctx.run()
    out = ctx.get_output_buffer()
    assert np.allclose(out[0::2], 1.0)
    assert np.allclose(out[1::2], 0.0)
