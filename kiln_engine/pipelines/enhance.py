"""Prompt enhancement for image generation."""

from __future__ import annotations

from ..chat.requests import SamplerConfig, assemble_request, run_request
from ..errors import InferenceError
from ..models.registry import DEFAULT_ENHANCER_PRESET, LoadConfig, ModelPreset, resolve
from ..runs.events import EventWriter, emit
from ..runtime.base import ModelHandle, Runtime
from .base import load_model

# CLIP (the FLUX.1-schnell text encoder) accepts 77 tokens including BOS/EOS.
MAX_CLIP_TOKENS = 77

# 50 words come out around 55-65 CLIP tokens.
MAX_PROMPT_WORDS = 50

DEGENERATE_SLACK_CHARS = 4

SYSTEM_PROMPT = (
    "You are a prompt enhancer for image generation models. Given a short description, "
    "expand it into a vivid image generation prompt. Keep artistic style references if provided. "
    "Add lighting, composition, and atmosphere details. The result MUST be under {max_words} words. "
    "Output ONLY the enhanced prompt, no explanation, no quotes."
)

ENHANCER_SAMPLER = SamplerConfig(temperature=0.9, top_p=0.95, max_output_tokens=80)


def truncate_to_words(text: str, max_words: int) -> str:
    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words])


def is_degenerate(output: str, seed: str, slack: int = DEGENERATE_SLACK_CHARS) -> bool:
    return len(output) <= len(seed) + slack


def build_seed(subject: str, style: str | None = None) -> str:
    if style:
        return f"{subject}, {style}"
    return subject


class PromptEnhancer:
    """Expands a short seed description into a richer, word-bounded prompt.

    A reply that is not meaningfully longer than the seed is treated as an
    echo and the seed is used instead. Runtime failures are not masked.
    """

    def __init__(
        self,
        runtime: Runtime,
        handle: ModelHandle,
        *,
        max_words: int = MAX_PROMPT_WORDS,
        sampler: SamplerConfig = ENHANCER_SAMPLER,
        events: EventWriter | None = None,
    ) -> None:
        self.runtime = runtime
        self.handle = handle
        self.max_words = max_words
        self.sampler = sampler
        self.system_prompt = SYSTEM_PROMPT.format(max_words=max_words)
        self.events = events

    @classmethod
    async def from_preset(
        cls,
        runtime: Runtime,
        preset: ModelPreset = DEFAULT_ENHANCER_PRESET,
        *,
        max_words: int = MAX_PROMPT_WORDS,
        events: EventWriter | None = None,
    ) -> "PromptEnhancer":
        handle = await load_model(runtime, resolve(preset), purpose="enhance", events=events)
        return cls(runtime, handle, max_words=max_words, events=events)

    @classmethod
    async def with_model(
        cls,
        runtime: Runtime,
        model_id: str,
        *,
        max_words: int = MAX_PROMPT_WORDS,
        events: EventWriter | None = None,
    ) -> "PromptEnhancer":
        config = LoadConfig.for_model_id(model_id)
        handle = await load_model(runtime, config, purpose="enhance", events=events)
        return cls(runtime, handle, max_words=max_words, events=events)

    def with_system_prompt(self, prompt: str) -> "PromptEnhancer":
        self.system_prompt = prompt
        return self

    async def enhance(self, seed: str) -> str:
        request = assemble_request(self.system_prompt, (), seed, sampler=self.sampler)
        try:
            result = await run_request(self.runtime, self.handle, request)
        except InferenceError as exc:
            emit(self.events, "inference_failed", stage="enhance", kind=exc.kind, error=str(exc))
            raise
        enhanced = result.text
        if is_degenerate(enhanced, seed):
            emit(self.events, "enhance_fallback", seed=seed, output=enhanced, inference_s=result.inference_s)
            return truncate_to_words(seed, self.max_words)
        prompt = truncate_to_words(enhanced, self.max_words)
        emit(
            self.events,
            "enhance_completed",
            seed=seed,
            prompt=prompt,
            truncated=prompt != enhanced,
            inference_s=result.inference_s,
        )
        return prompt

    async def enhance_for_subject(self, subject: str, style: str | None = None) -> str:
        return await self.enhance(build_seed(subject, style))

    def close(self) -> None:
        self.runtime.close(self.handle)
