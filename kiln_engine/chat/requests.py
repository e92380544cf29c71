"""Generation request assembly."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Iterable

from ..media.attachments import Attachment, encode_attachment
from ..runtime.base import ModelHandle, Runtime
from .conversation import ConversationTurn, Role


@dataclass(frozen=True)
class SamplerConfig:
    temperature: float = 0.7
    top_p: float | None = 0.95
    max_output_tokens: int | None = 512


@dataclass(frozen=True)
class GenerationRequest:
    messages: tuple[ConversationTurn, ...]
    sampler: SamplerConfig
    attachment: Attachment | None = None

    @property
    def user_text(self) -> str:
        return self.messages[-1].text


@dataclass(frozen=True)
class GenerationResult:
    text: str
    inference_s: float
    audio_duration_s: float | None = None
    sample_rate: int | None = None
    channels: int | None = None

    @property
    def real_time_factor(self) -> float | None:
        if self.audio_duration_s is None:
            return None
        return real_time_factor(self.inference_s, self.audio_duration_s)


def real_time_factor(inference_s: float, audio_duration_s: float) -> float:
    if audio_duration_s > 0:
        return inference_s / audio_duration_s
    return math.inf


def assemble_request(
    system_prompt: str,
    prior_turns: Iterable[ConversationTurn],
    user_text: str,
    *,
    sampler: SamplerConfig,
    attachment: Any | None = None,
) -> GenerationRequest:
    encoded = encode_attachment(attachment) if attachment is not None else None
    messages = (
        (ConversationTurn(role=Role.SYSTEM, text=system_prompt),)
        + tuple(prior_turns)
        + (ConversationTurn(role=Role.USER, text=user_text),)
    )
    return GenerationRequest(messages=messages, sampler=sampler, attachment=encoded)


async def run_request(runtime: Runtime, handle: ModelHandle, request: GenerationRequest) -> GenerationResult:
    start = time.monotonic()
    reply = await runtime.infer(handle, request)
    elapsed = time.monotonic() - start
    text = (reply.text or "").strip()
    attachment = request.attachment
    if attachment is not None and attachment.kind == "audio":
        meta = attachment.metadata
        return GenerationResult(
            text=text,
            inference_s=elapsed,
            audio_duration_s=float(meta["duration_s"]),
            sample_rate=int(meta["sample_rate"]),
            channels=int(meta["channels"]),
        )
    return GenerationResult(text=text, inference_s=elapsed)
