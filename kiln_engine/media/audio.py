"""Audio input decoding and encoding helpers."""

from __future__ import annotations

import io
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from ..errors import AudioDecodeError


@dataclass(frozen=True)
class AudioInput:
    """Decoded audio.

    Attributes:
        samples: Interleaved float32 samples in [-1.0, 1.0]
        sample_rate: Frames per second
        channels: Number of interleaved channels
    """

    samples: np.ndarray
    sample_rate: int
    channels: int

    @property
    def duration_s(self) -> float:
        denom = float(self.sample_rate) * float(self.channels)
        if denom <= 0:
            return 0.0
        return float(len(self.samples)) / denom


def decode_audio(data: bytes) -> AudioInput:
    if not data:
        raise AudioDecodeError("Failed to decode audio bytes: input is empty.")
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            channels = int(wf.getnchannels())
            sample_rate = int(wf.getframerate())
            sample_width = int(wf.getsampwidth())
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as exc:
        raise AudioDecodeError(f"Failed to decode audio bytes: {exc}") from exc
    if channels <= 0 or sample_width <= 0:
        raise AudioDecodeError(f"Failed to decode audio bytes: {channels} channels, {sample_width}-byte samples.")
    # A truncated file can end mid-frame.
    frame_size = sample_width * channels
    raw = raw[: len(raw) - len(raw) % frame_size]
    samples = _pcm_to_float32(raw, sample_width)
    return AudioInput(samples=samples, sample_rate=sample_rate, channels=channels)


def read_audio_file(path: Path) -> AudioInput:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise AudioDecodeError(f"Failed to read audio file: {path}") from exc
    return decode_audio(data)


def encode_wav(audio: AudioInput) -> bytes:
    pcm = np.clip(audio.samples.astype(np.float32) * 32768.0, -32768, 32767).astype("<i2")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(audio.channels)
        wf.setsampwidth(2)
        wf.setframerate(audio.sample_rate)
        wf.writeframes(pcm.tobytes())
    return buffer.getvalue()


def _pcm_to_float32(raw: bytes, sample_width: int) -> np.ndarray:
    if sample_width == 1:
        return (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    if sample_width == 2:
        return np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if sample_width == 3:
        pcm = np.frombuffer(raw, dtype=np.uint8).reshape(-1, 3)
        signed = (
            pcm[:, 0].astype(np.int32)
            | (pcm[:, 1].astype(np.int32) << 8)
            | (pcm[:, 2].astype(np.int32) << 16)
        )
        signed = np.where((signed & 0x800000) != 0, signed - 0x1000000, signed)
        return signed.astype(np.float32) / 8388608.0
    if sample_width == 4:
        return np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    raise AudioDecodeError(f"Unsupported WAV sample width: {sample_width}")
