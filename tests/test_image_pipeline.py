from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from kiln_engine.errors import InferenceError
from kiln_engine.models.registry import ModelPreset, resolve
from kiln_engine.pipelines.enhance import PromptEnhancer
from kiln_engine.pipelines.image import ImageGenerator
from kiln_engine.runs.events import EventWriter
from kiln_engine.runtime.dryrun import DryRunRuntime


def test_generate_without_enhancer(tmp_path: Path) -> None:
    runtime = DryRunRuntime()
    generator = asyncio.run(ImageGenerator.from_preset(runtime, out_dir=tmp_path))
    result = asyncio.run(generator.generate("A red lighthouse", size="square", seed=11))

    assert runtime.loaded == [resolve(ModelPreset.FLUX_SCHNELL)]
    assert result.prompt == "A red lighthouse"
    assert result.enhanced is False
    assert result.artifact.image_path.parent == tmp_path
    assert result.artifact.seed == 11


def test_generate_with_enhancer(tmp_path: Path) -> None:
    runtime = DryRunRuntime(responder=lambda request: "A red lighthouse at dusk, crashing waves, cinematic light")
    enhancer = asyncio.run(PromptEnhancer.from_preset(runtime, ModelPreset.GEMMA_E2B))
    generator = asyncio.run(ImageGenerator.from_preset(runtime, out_dir=tmp_path))
    result = asyncio.run(generator.generate("A red lighthouse", enhancer=enhancer, seed=1))

    assert result.enhanced is True
    assert result.prompt == "A red lighthouse at dusk, crashing waves, cinematic light"
    assert result.artifact.image_path.exists()


def test_closed_generator_fails(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    runtime = DryRunRuntime()
    generator = asyncio.run(
        ImageGenerator.from_preset(runtime, out_dir=tmp_path, events=EventWriter(events_path, "run-1"))
    )
    generator.close()
    with pytest.raises(InferenceError):
        asyncio.run(generator.generate("anything"))
    events = [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines()]
    assert [event["type"] for event in events] == ["model_loaded", "inference_failed"]
    assert events[-1]["stage"] == "image"


def test_image_event(tmp_path: Path) -> None:
    events_path = tmp_path / "events.jsonl"
    runtime = DryRunRuntime()
    generator = asyncio.run(
        ImageGenerator.from_preset(runtime, out_dir=tmp_path, events=EventWriter(events_path, "run-1"))
    )
    asyncio.run(generator.generate("castle", size="portrait", seed=5))
    events = [json.loads(line) for line in events_path.read_text(encoding="utf-8").splitlines()]
    assert events[-1]["type"] == "image_generated"
    assert (events[-1]["width"], events[-1]["height"]) == (768, 1024)


def test_echoing_enhancer_is_not_reported_as_enhanced(tmp_path: Path) -> None:
    runtime = DryRunRuntime(responder=lambda request: request.user_text)
    enhancer = asyncio.run(PromptEnhancer.from_preset(runtime))
    generator = asyncio.run(ImageGenerator.from_preset(runtime, out_dir=tmp_path))
    result = asyncio.run(generator.generate("A red lighthouse", enhancer=enhancer, seed=2))

    assert result.prompt == "A red lighthouse"
    assert result.enhanced is False
