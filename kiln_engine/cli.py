"""kiln CLI entrypoints."""

from __future__ import annotations

import argparse
import asyncio
import os
import time
import uuid
from pathlib import Path

from .chat.loop import ChatLoop
from .chat.session import ChatSession
from .cli_progress import ProgressTicker, elapsed_line, format_duration
from .errors import KilnError
from .models.registry import ModelPreset, presets_for, preset_spec
from .models.selectors import PresetSelector
from .pipelines.enhance import PromptEnhancer
from .pipelines.image import DEFAULT_IMAGE_PROMPT, ImageGenerator
from .pipelines.transcribe import AudioTranscriber
from .runs.events import EventWriter
from .runtime import RUNTIME_CHOICES, default_runtime
from .utils import load_dotenv

DEFAULT_SEED = "Detective Conan Main Theme, in the style of Raden Saleh, trending on artstation, highly detailed"


def _preset_choices(capability: str) -> list[str]:
    return [preset.value for preset in presets_for(capability)]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kiln", description="Local generative model harness")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--runtime", choices=RUNTIME_CHOICES, help="Inference runtime (default: $KILN_RUNTIME or server)")
    common.add_argument("--events", help="Append diagnostic events to this JSONL file")
    sub = parser.add_subparsers(dest="command")

    prompt = sub.add_parser("prompt", parents=[common], help="Enhance a short image-generation prompt")
    prompt.add_argument("-s", "--seed", help="Seed prompt to enhance")
    prompt.add_argument("--style", help="Style qualifier appended to the seed")
    prompt.add_argument("-m", "--model", choices=_preset_choices("enhance"))

    chat = sub.add_parser("chat", parents=[common], help="Interactive multi-turn chat")
    chat.add_argument("-m", "--model", choices=_preset_choices("chat"))
    chat.add_argument("--system", help="Override the system prompt")

    transcribe = sub.add_parser("transcribe", parents=[common], help="Transcribe a WAV file")
    transcribe.add_argument("audio", help="Path to the audio file")
    transcribe.add_argument("-m", "--model", choices=_preset_choices("transcribe"))
    transcribe.add_argument("-p", "--prompt", help="Custom instruction sent with the audio")

    image = sub.add_parser("image", parents=[common], help="Generate an image with a diffusion model")
    image.add_argument("-p", "--prompt", help="Prompt for the image")
    image.add_argument("--enhance", action="store_true", help="Run the prompt through the enhancer first")
    image.add_argument("--enhancer-model", dest="enhancer_model", choices=_preset_choices("enhance"))
    image.add_argument("--size", default="1024x1024")
    image.add_argument("--seed", type=int)
    image.add_argument("--out", default=".", help="Output directory")

    sub.add_parser("presets", help="List model presets")
    return parser


def _events_from_args(args: argparse.Namespace) -> EventWriter | None:
    raw = args.events or os.getenv("KILN_EVENTS")
    if not raw:
        return None
    return EventWriter(Path(raw), str(uuid.uuid4()))


def _select(raw: str | None, capability: str) -> ModelPreset:
    requested = ModelPreset.from_name(raw) if raw else None
    selection = PresetSelector().select(requested, capability)
    if selection.fallback_reason:
        print(f"Model fallback: {selection.fallback_reason}")
    return selection.preset


def _announce(kind: str, preset: ModelPreset) -> None:
    print(f"Loading {kind} model: {preset.label}")
    print(f"  Memory estimate: {preset_spec(preset).approx_memory}")


async def _run_prompt(args: argparse.Namespace) -> int:
    preset = _select(args.model, "enhance")
    runtime = default_runtime(args.runtime)
    events = _events_from_args(args)
    _announce("prompt enhancer", preset)
    start = time.monotonic()
    enhancer = await PromptEnhancer.from_preset(runtime, preset, events=events)
    print(elapsed_line("Model loaded in", time.monotonic() - start))
    try:
        seed = args.seed or DEFAULT_SEED
        print(f"\nSeed prompt:\n  \"{seed}\"\n")
        start = time.monotonic()
        enhanced = await enhancer.enhance_for_subject(seed, args.style)
        print(f"Enhanced prompt ({format_duration(time.monotonic() - start)}):")
        print(f"  \"{enhanced}\"")
    finally:
        enhancer.close()
    return 0


async def _run_chat(args: argparse.Namespace) -> int:
    preset = _select(args.model, "chat")
    runtime = default_runtime(args.runtime)
    _announce("chat", preset)
    start = time.monotonic()
    session = await ChatSession.from_preset(
        runtime, preset, system_prompt=args.system, events=_events_from_args(args)
    )
    print(elapsed_line("Model loaded in", time.monotonic() - start))
    print()
    try:
        await ChatLoop(session).run()
    finally:
        session.close()
    return 0


async def _run_transcribe(args: argparse.Namespace) -> int:
    audio_path = Path(args.audio)
    if not audio_path.exists():
        print(f"Audio file not found: {audio_path}")
        return 1
    preset = _select(args.model, "transcribe")
    runtime = default_runtime(args.runtime)
    _announce("transcription", preset)
    start = time.monotonic()
    transcriber = await AudioTranscriber.from_preset(runtime, preset, events=_events_from_args(args))
    print(elapsed_line("Model loaded in", time.monotonic() - start))
    print()
    try:
        print(f"Transcribing: {audio_path}")
        with ProgressTicker("Transcribing audio"):
            result = await transcriber.transcribe_file(audio_path, args.prompt)
        print(f"\n{result.format()}")
    finally:
        transcriber.close()
    return 0


async def _run_image(args: argparse.Namespace) -> int:
    preset = _select(None, "image")
    runtime = default_runtime(args.runtime)
    events = _events_from_args(args)
    enhancer: PromptEnhancer | None = None
    generator: ImageGenerator | None = None
    try:
        if args.enhance:
            enhancer_preset = _select(args.enhancer_model, "enhance")
            _announce("prompt enhancer", enhancer_preset)
            enhancer = await PromptEnhancer.from_preset(runtime, enhancer_preset, events=events)
        _announce("diffusion", preset)
        generator = await ImageGenerator.from_preset(runtime, preset, out_dir=Path(args.out), events=events)
        prompt = args.prompt or DEFAULT_IMAGE_PROMPT
        print(f"Generating image for prompt:\n  \"{prompt}\"")
        with ProgressTicker("Generating image"):
            result = await generator.generate(prompt, enhancer=enhancer, size=args.size, seed=args.seed)
        if result.enhanced:
            print(f"Enhanced prompt:\n  \"{result.prompt}\"")
        print(f"Done! Image generation took {result.inference_s:.1f}s.")
        print(f"Image saved at: {result.artifact.image_path}")
    finally:
        if generator is not None:
            generator.close()
        if enhancer is not None:
            enhancer.close()
    return 0


def _handle_presets(_args: argparse.Namespace) -> int:
    for preset in ModelPreset:
        spec = preset_spec(preset)
        quant = spec.quantization or "-"
        print(
            f"{preset.value:<14} {spec.model_id:<36} {spec.precision:<5} {quant:<4} "
            f"{spec.approx_memory:<20} {','.join(spec.capabilities)}"
        )
    return 0


_ASYNC_HANDLERS = {
    "prompt": _run_prompt,
    "chat": _run_chat,
    "transcribe": _run_transcribe,
    "image": _run_image,
}


def _run_async(handler, args: argparse.Namespace) -> int:
    try:
        return asyncio.run(handler(args))
    except KilnError as exc:
        print(f"{exc.stage.capitalize()} failed: {exc}")
        return 1


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)
    if args.command == "presets":
        raise SystemExit(_handle_presets(args))
    handler = _ASYNC_HANDLERS.get(args.command)
    if handler is not None:
        raise SystemExit(_run_async(handler, args))
    parser.print_help()
    raise SystemExit(1)


if __name__ == "__main__":
    main()
