"""Encode media into the attachment parts a runtime expects."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Mapping

import numpy as np
from PIL import Image

from ..errors import AttachmentError
from .audio import AudioInput, encode_wav


@dataclass(frozen=True)
class Attachment:
    kind: str
    part: Mapping[str, Any]
    metadata: Mapping[str, Any] = field(default_factory=dict)


def encode_attachment(media: Any) -> Attachment:
    if isinstance(media, AudioInput):
        return _encode_audio(media)
    if isinstance(media, Image.Image):
        return _encode_image(media)
    raise AttachmentError(f"Unsupported attachment type: {type(media).__name__}")


def _encode_audio(audio: AudioInput) -> Attachment:
    if audio.sample_rate <= 0 or audio.channels <= 0:
        raise AttachmentError(
            f"Invalid audio format: {audio.sample_rate} Hz, {audio.channels} ch."
        )
    samples = np.asarray(audio.samples)
    if samples.ndim != 1:
        raise AttachmentError(f"Audio samples must be one interleaved buffer, got shape {samples.shape}.")
    if not np.all(np.isfinite(samples)):
        raise AttachmentError("Audio attachment contains non-finite samples.")
    try:
        wav = encode_wav(audio)
    except (ValueError, TypeError) as exc:
        raise AttachmentError(f"Failed to encode audio attachment: {exc}") from exc
    part = {
        "type": "input_audio",
        "input_audio": {"data": base64.b64encode(wav).decode("ascii"), "format": "wav"},
    }
    metadata = {
        "sample_rate": audio.sample_rate,
        "channels": audio.channels,
        "sample_count": int(samples.size),
        "duration_s": audio.duration_s,
    }
    return Attachment(kind="audio", part=part, metadata=metadata)


def _encode_image(image: Image.Image) -> Attachment:
    buffer = BytesIO()
    try:
        image.convert("RGB").save(buffer, format="PNG")
    except (OSError, ValueError) as exc:
        raise AttachmentError(f"Failed to encode image attachment: {exc}") from exc
    data = base64.b64encode(buffer.getvalue()).decode("ascii")
    part = {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{data}"}}
    return Attachment(kind="image", part=part, metadata={"width": image.width, "height": image.height})
