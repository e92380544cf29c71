"""Preset selection and fallback logic."""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ConfigurationError
from .registry import DEFAULT_PRESETS, ModelPreset, presets_for, preset_spec


@dataclass(frozen=True)
class PresetSelection:
    preset: ModelPreset
    requested: ModelPreset | None
    fallback_reason: str | None = None


class PresetSelector:
    def __init__(self, defaults: dict[str, ModelPreset] | None = None) -> None:
        self.defaults = dict(defaults) if defaults else dict(DEFAULT_PRESETS)

    def select(self, requested: ModelPreset | None, capability: str) -> PresetSelection:
        if requested is not None:
            if preset_spec(requested).supports(capability):
                return PresetSelection(preset=requested, requested=requested)
            fallback_reason = f"Preset '{requested.value}' does not support '{capability}'."
        else:
            fallback_reason = None

        default = self.defaults.get(capability)
        if default is not None and preset_spec(default).supports(capability):
            return PresetSelection(preset=default, requested=requested, fallback_reason=fallback_reason)

        candidates = presets_for(capability)
        if not candidates:
            raise ConfigurationError(f"No presets available for capability '{capability}'.")
        return PresetSelection(preset=candidates[0], requested=requested, fallback_reason=fallback_reason)
