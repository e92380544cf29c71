"""Audio transcription through a multimodal model."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..chat.requests import SamplerConfig, assemble_request, real_time_factor, run_request
from ..cli_progress import format_duration
from ..errors import InferenceError
from ..media.audio import AudioInput, decode_audio, read_audio_file
from ..models.registry import DEFAULT_TRANSCRIPTION_PRESET, ModelPreset, resolve
from ..runs.events import EventWriter, emit
from ..runtime.base import ModelHandle, Runtime
from .base import load_model

TRANSCRIPTION_SYSTEM_PROMPT = (
    "You are a precise audio transcription assistant. "
    "Your task is to listen to the audio and produce an exact, word-for-word transcription "
    "of everything that is spoken or sung. Follow these rules strictly:\n"
    "1. Transcribe every word exactly as you hear it.\n"
    "2. Use standard punctuation (periods, commas, question marks).\n"
    "3. Start a new line for each distinct sentence or phrase.\n"
    "4. If a section is unintelligible, write [inaudible].\n"
    "5. Do NOT add any commentary, explanation, or description. Output ONLY the transcription."
)

DEFAULT_USER_PROMPT = "Transcribe the vocals in this audio exactly, word for word."

# Greedy decoding: one best hypothesis, no sampling.
TRANSCRIPTION_SAMPLER = SamplerConfig(temperature=0.0, top_p=None, max_output_tokens=None)


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    audio_duration_s: float
    inference_s: float
    sample_rate: int
    channels: int

    @property
    def real_time_factor(self) -> float:
        """Values below 1.0 mean faster than real time."""
        return real_time_factor(self.inference_s, self.audio_duration_s)

    def format(self) -> str:
        lines = [
            "── Transcription ──",
            self.text,
            "───────────────────",
            f"Audio duration : {self.audio_duration_s:.1f}s ({self.sample_rate} Hz, {self.channels} ch)",
            f"Inference time : {format_duration(self.inference_s)}",
            f"Real-time factor: {self.real_time_factor:.2f}x",
        ]
        return "\n".join(lines)


class AudioTranscriber:
    def __init__(self, runtime: Runtime, handle: ModelHandle, *, events: EventWriter | None = None) -> None:
        self.runtime = runtime
        self.handle = handle
        self.system_prompt = TRANSCRIPTION_SYSTEM_PROMPT
        self.events = events

    @classmethod
    async def from_preset(
        cls,
        runtime: Runtime,
        preset: ModelPreset = DEFAULT_TRANSCRIPTION_PRESET,
        *,
        events: EventWriter | None = None,
    ) -> "AudioTranscriber":
        handle = await load_model(runtime, resolve(preset), purpose="transcribe", events=events)
        return cls(runtime, handle, events=events)

    def with_system_prompt(self, prompt: str) -> "AudioTranscriber":
        self.system_prompt = prompt
        return self

    async def transcribe_bytes(self, data: bytes, user_prompt: str | None = None) -> TranscriptionResult:
        return await self.transcribe_audio(decode_audio(data), user_prompt)

    async def transcribe_file(self, path: Path, user_prompt: str | None = None) -> TranscriptionResult:
        return await self.transcribe_audio(read_audio_file(Path(path)), user_prompt)

    async def transcribe_audio(self, audio: AudioInput, user_prompt: str | None = None) -> TranscriptionResult:
        request = assemble_request(
            self.system_prompt,
            (),
            user_prompt or DEFAULT_USER_PROMPT,
            sampler=TRANSCRIPTION_SAMPLER,
            attachment=audio,
        )
        try:
            result = await run_request(self.runtime, self.handle, request)
        except InferenceError as exc:
            emit(self.events, "inference_failed", stage="transcribe", kind=exc.kind, error=str(exc))
            raise
        transcription = TranscriptionResult(
            text=result.text,
            audio_duration_s=result.audio_duration_s or 0.0,
            inference_s=result.inference_s,
            sample_rate=result.sample_rate or audio.sample_rate,
            channels=result.channels or audio.channels,
        )
        emit(
            self.events,
            "transcription_completed",
            audio_duration_s=transcription.audio_duration_s,
            inference_s=transcription.inference_s,
            real_time_factor=transcription.real_time_factor,
            chars=len(transcription.text),
        )
        return transcription

    def close(self) -> None:
        self.runtime.close(self.handle)
