import io
import math
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import soundfile as sf
from scipy import signal

SUPPORTED_EXTENSIONS = (".wav", ".flac", ".ogg", ".mp3")


class AudioLoadingError(Exception):
    """Raised when an audio file cannot be loaded."""


def is_supported_file(path: Union[str, Path]) -> bool:
    return str(path).lower().endswith(SUPPORTED_EXTENSIONS)


def _resample(audio: np.ndarray, original_sr: int, target_sr: int) -> np.ndarray:
    if original_sr == target_sr:
        return audio
    gcd = math.gcd(int(original_sr), int(target_sr))
    upsample_factor = target_sr // gcd
    downsample_factor = original_sr // gcd
    return signal.resample_poly(audio, upsample_factor, downsample_factor)


def load_audio(
    source: Union[str, Path, io.BytesIO],
    target_sample_rate: Optional[int] = None,
    channel: Optional[int] = None,
    max_duration_sec: Optional[float] = None,
) -> Tuple[np.ndarray, int]:
    """
    Load an audio file using soundfile and optionally resample it.

    Multi-channel audio is averaged to mono unless `channel` selects one
    channel. Returns float32 samples and the effective sample rate.
    """
    try:
        data, sample_rate = sf.read(source, dtype="float32", always_2d=True)
    except Exception as exc:
        raise AudioLoadingError(str(exc)) from exc

    if data.shape[0] == 0:
        raise AudioLoadingError(f"No audio frames in {source}")

    if channel is None:
        data = data.mean(axis=1)
    else:
        if not 0 <= channel < data.shape[1]:
            raise AudioLoadingError(f"Channel {channel} out of range for {data.shape[1]}-channel audio")
        data = data[:, channel]

    if max_duration_sec is not None:
        data = data[: int(max_duration_sec * sample_rate)]

    if target_sample_rate:
        data = _resample(data, sample_rate, target_sample_rate)
        sample_rate = target_sample_rate

    return data.astype(np.float32), int(sample_rate)


def audio_info(path: Union[str, Path]) -> dict:
    try:
        meta = sf.info(path)
    except Exception as exc:
        raise AudioLoadingError(str(exc)) from exc
    duration = meta.frames / float(meta.samplerate) if meta.samplerate else 0.0
    return {
        "sample_rate": int(meta.samplerate),
        "frames": int(meta.frames),
        "channels": int(meta.channels),
        "duration": duration,
        "path": Path(path),
    }
