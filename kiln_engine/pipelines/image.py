"""Image generation with optional prompt enhancement."""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path

from ..errors import InferenceError
from ..models.registry import DEFAULT_IMAGE_PRESET, ModelPreset, resolve
from ..runs.events import EventWriter, emit
from ..runtime.base import ImageArtifact, ModelHandle, Runtime
from .base import load_model
from .enhance import PromptEnhancer

DEFAULT_IMAGE_PROMPT = (
    "A majestic castle on a cliff overlooking the sea at sunset, "
    "highly detailed, digital painting, trending on artstation"
)


@dataclass(frozen=True)
class ImageResult:
    prompt: str
    enhanced: bool
    artifact: ImageArtifact
    inference_s: float


class ImageGenerator:
    def __init__(
        self,
        runtime: Runtime,
        handle: ModelHandle,
        *,
        out_dir: Path | None = None,
        events: EventWriter | None = None,
    ) -> None:
        self.runtime = runtime
        self.handle = handle
        self.out_dir = out_dir
        self.events = events

    @classmethod
    async def from_preset(
        cls,
        runtime: Runtime,
        preset: ModelPreset = DEFAULT_IMAGE_PRESET,
        *,
        out_dir: Path | None = None,
        events: EventWriter | None = None,
    ) -> "ImageGenerator":
        handle = await load_model(runtime, resolve(preset), purpose="image", events=events)
        return cls(runtime, handle, out_dir=out_dir, events=events)

    async def generate(
        self,
        prompt: str,
        *,
        enhancer: PromptEnhancer | None = None,
        size: str = "1024x1024",
        seed: int | None = None,
    ) -> ImageResult:
        final_prompt = await enhancer.enhance(prompt) if enhancer is not None else prompt
        start = time.monotonic()
        try:
            artifact = await self.runtime.generate_image(
                self.handle,
                final_prompt,
                size=size,
                seed=seed,
                out_dir=self.out_dir,
            )
        except InferenceError as exc:
            emit(self.events, "inference_failed", stage="image", kind=exc.kind, error=str(exc))
            raise
        elapsed = time.monotonic() - start
        emit(
            self.events,
            "image_generated",
            prompt=final_prompt,
            image_path=str(artifact.image_path),
            width=artifact.width,
            height=artifact.height,
            seed=artifact.seed,
            inference_s=elapsed,
        )
        return ImageResult(
            prompt=final_prompt,
            enhanced=final_prompt != prompt,
            artifact=artifact,
            inference_s=elapsed,
        )

    def close(self) -> None:
        self.runtime.close(self.handle)
