"""Dry-run runtime (offline)."""

from __future__ import annotations

import hashlib
import random
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from PIL import Image, ImageDraw, ImageFont

from ..errors import InferenceError, ModelLoadError
from ..models.registry import LoadConfig
from .base import ImageArtifact, ModelHandle, RuntimeReply, build_image_path, resolve_size

if TYPE_CHECKING:
    from ..chat.requests import GenerationRequest

Responder = Callable[["GenerationRequest"], str]


class DryRunRuntime:
    """Deterministic stand-in for a local inference runtime.

    Replies come from ``responder`` when given; otherwise the last user turn
    is echoed back with a fixed elaboration, and audio requests describe the
    attached clip.
    """

    name = "dryrun"

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder or _default_responder
        self.loaded: list[LoadConfig] = []
        self.requests: list[GenerationRequest] = []

    async def load(self, config: LoadConfig) -> ModelHandle:
        if not config.model_id.strip():
            raise ModelLoadError("Cannot load a model without a model id.")
        self.loaded.append(config)
        return ModelHandle(handle_id=str(uuid.uuid4()), config=config, runtime=self.name)

    async def infer(self, handle: ModelHandle, request: GenerationRequest) -> RuntimeReply:
        _ensure_open(handle)
        if handle.config.architecture == "diffusion":
            raise InferenceError(f"{handle.config.model_id} is an image model; it cannot chat.", kind="malformed")
        self.requests.append(request)
        text = self.responder(request)
        return RuntimeReply(text=text, usage={"messages": len(request.messages)})

    async def generate_image(
        self,
        handle: ModelHandle,
        prompt: str,
        *,
        size: str = "1024x1024",
        seed: int | None = None,
        out_dir: Path | None = None,
    ) -> ImageArtifact:
        _ensure_open(handle)
        width, height = resolve_size(size)
        seed = seed if seed is not None else random.randint(1, 10_000_000)
        image_path = build_image_path(out_dir, seed)
        image = Image.new("RGB", (width, height), _color_from_prompt(prompt, seed))
        draw = ImageDraw.Draw(image)
        font = ImageFont.load_default()
        draw.text((20, 20), f"dryrun\n{prompt[:60]}", fill=(255, 255, 255), font=font)
        image.save(image_path)
        return ImageArtifact(
            image_path=image_path,
            width=width,
            height=height,
            seed=seed,
            metadata={"dryrun": True, "model": handle.config.model_id},
        )

    def close(self, handle: ModelHandle) -> None:
        handle.closed = True


def _ensure_open(handle: ModelHandle) -> None:
    if handle.closed:
        raise InferenceError(f"Model handle {handle.handle_id} is closed.")


def _default_responder(request: GenerationRequest) -> str:
    attachment = request.attachment
    if attachment is not None and attachment.kind == "audio":
        seconds = float(attachment.metadata.get("duration_s", 0.0))
        return f"[dryrun transcription of {seconds:.1f}s audio]"
    return (
        f"{request.user_text}, soft volumetric lighting, balanced composition, "
        "rich atmosphere, highly detailed"
    )


def _color_from_prompt(prompt: str, seed: int) -> tuple[int, int, int]:
    digest = hashlib.sha256(f"{prompt}:{seed}".encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]
