"""Runtime collaborator contract."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping, Protocol

from ..models.registry import LoadConfig

if TYPE_CHECKING:
    from ..chat.requests import GenerationRequest


@dataclass
class ModelHandle:
    handle_id: str
    config: LoadConfig
    runtime: str
    state: Any = None
    closed: bool = False


@dataclass
class RuntimeReply:
    text: str
    usage: Mapping[str, Any] | None = None
    raw: Mapping[str, Any] | None = None


@dataclass
class ImageArtifact:
    image_path: Path
    width: int | None = None
    height: int | None = None
    seed: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


class Runtime(Protocol):
    name: str

    async def load(self, config: LoadConfig) -> ModelHandle:
        ...

    async def infer(self, handle: ModelHandle, request: "GenerationRequest") -> RuntimeReply:
        ...

    async def generate_image(
        self,
        handle: ModelHandle,
        prompt: str,
        *,
        size: str = "1024x1024",
        seed: int | None = None,
        out_dir: Path | None = None,
    ) -> ImageArtifact:
        ...

    def close(self, handle: ModelHandle) -> None:
        ...


def resolve_size(size: str) -> tuple[int, int]:
    normalized = (size or "").strip().lower()
    if normalized in {"portrait", "tall"}:
        return (768, 1024)
    if normalized in {"landscape", "wide"}:
        return (1024, 768)
    if normalized in {"square", "1:1"}:
        return (1024, 1024)
    if "x" in normalized:
        parts = normalized.split("x", 1)
        try:
            return int(parts[0]), int(parts[1])
        except ValueError:
            return (1024, 1024)
    return (1024, 1024)


def build_image_path(out_dir: Path | None, seed: int | None = None, suffix: str = "png") -> Path:
    base_dir = out_dir or Path(".")
    base_dir.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time() * 1000)
    return base_dir / f"image-{stamp}-{seed or 0}.{suffix}"
