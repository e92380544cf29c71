"""Model preset registry for kiln."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ..errors import ConfigurationError


class ModelPreset(str, Enum):
    GEMMA_E2B = "gemma-e2b"
    GEMMA_E4B = "gemma-e4b"
    GEMMA_E4B_Q4K = "gemma-e4b-q4k"
    PHI_35_MINI = "phi-3.5-mini"
    FLUX_SCHNELL = "flux-schnell"

    @classmethod
    def from_name(cls, name: str) -> "ModelPreset":
        normalized = (name or "").strip().lower()
        for preset in cls:
            if preset.value == normalized:
                return preset
        choices = ", ".join(preset.value for preset in cls)
        raise ConfigurationError(f"Unknown model preset '{name}' (choices: {choices}).")

    @property
    def spec(self) -> "PresetSpec":
        return _PRESETS[self]

    @property
    def label(self) -> str:
        spec = self.spec
        return f"{spec.display_name} ({spec.model_id})"

    def __str__(self) -> str:
        return self.label


@dataclass(frozen=True)
class PresetSpec:
    model_id: str
    display_name: str
    approx_memory: str
    precision: str
    quantization: str | None
    architecture: str
    capabilities: tuple[str, ...]
    loader: str | None = None

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


@dataclass(frozen=True)
class LoadConfig:
    """Everything a runtime needs to load one model instance."""

    model_id: str
    precision: str = "f16"
    quantization: str | None = None
    architecture: str = "text"
    loader: str | None = None

    @classmethod
    def for_model_id(cls, model_id: str) -> "LoadConfig":
        return cls(model_id=model_id, precision="f16", quantization=None, architecture="text")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_GEMMA_CAPABILITIES = ("chat", "enhance", "transcribe")

# Gemma 3n ships a conformer audio encoder, so runtimes load it as a vision
# (multimodal) model even for text-only use.
_PRESETS: dict[ModelPreset, PresetSpec] = {
    ModelPreset.GEMMA_E2B: PresetSpec(
        model_id="google/gemma-3n-E2B-it",
        display_name="Gemma 3n E2B",
        approx_memory="~1.5 GB (Q4K)",
        precision="auto",
        quantization="Q4K",
        architecture="vision",
        capabilities=_GEMMA_CAPABILITIES,
    ),
    ModelPreset.GEMMA_E4B: PresetSpec(
        model_id="google/gemma-3n-E4B-it",
        display_name="Gemma 3n E4B",
        approx_memory="~8 GB (F16)",
        precision="f16",
        quantization=None,
        architecture="vision",
        capabilities=_GEMMA_CAPABILITIES,
    ),
    ModelPreset.GEMMA_E4B_Q4K: PresetSpec(
        model_id="google/gemma-3n-E4B-it",
        display_name="Gemma 3n E4B (Q4K)",
        approx_memory="~3 GB (Q4K)",
        precision="auto",
        quantization="Q4K",
        architecture="vision",
        capabilities=_GEMMA_CAPABILITIES,
    ),
    ModelPreset.PHI_35_MINI: PresetSpec(
        model_id="microsoft/Phi-3.5-mini-instruct",
        display_name="Phi-3.5-mini",
        approx_memory="~2.8 GB (Q4K)",
        precision="auto",
        quantization="Q4K",
        architecture="text",
        capabilities=("chat", "enhance"),
    ),
    ModelPreset.FLUX_SCHNELL: PresetSpec(
        model_id="black-forest-labs/FLUX.1-schnell",
        display_name="FLUX.1-schnell",
        approx_memory="~12 GB (offloaded)",
        precision="auto",
        quantization=None,
        architecture="diffusion",
        capabilities=("image",),
        loader="flux-offloaded",
    ),
}

DEFAULT_CHAT_PRESET = ModelPreset.GEMMA_E4B
DEFAULT_ENHANCER_PRESET = ModelPreset.GEMMA_E4B
DEFAULT_TRANSCRIPTION_PRESET = ModelPreset.GEMMA_E4B
DEFAULT_IMAGE_PRESET = ModelPreset.FLUX_SCHNELL

DEFAULT_PRESETS: dict[str, ModelPreset] = {
    "chat": DEFAULT_CHAT_PRESET,
    "enhance": DEFAULT_ENHANCER_PRESET,
    "transcribe": DEFAULT_TRANSCRIPTION_PRESET,
    "image": DEFAULT_IMAGE_PRESET,
}


def preset_spec(preset: ModelPreset) -> PresetSpec:
    return _PRESETS[preset]


def resolve(preset: ModelPreset) -> LoadConfig:
    spec = _PRESETS[preset]
    return LoadConfig(
        model_id=spec.model_id,
        precision=spec.precision,
        quantization=spec.quantization,
        architecture=spec.architecture,
        loader=spec.loader,
    )


def presets_for(capability: str) -> list[ModelPreset]:
    return [preset for preset in ModelPreset if _PRESETS[preset].supports(capability)]
