from __future__ import annotations

import asyncio
import base64
import http.client
from io import BytesIO
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from kiln_engine.chat.conversation import ConversationTurn, Role
from kiln_engine.chat.requests import SamplerConfig, assemble_request
from kiln_engine.chat.session import ChatSession
from kiln_engine.errors import InferenceError, ModelLoadError
from kiln_engine.media.audio import AudioInput
from kiln_engine.models.registry import ModelPreset, resolve
from kiln_engine.runtime import server as server_module
from kiln_engine.runtime.base import ModelHandle
from kiln_engine.runtime.server import ServerRuntime, build_chat_payload, extract_message_text


def test_build_chat_payload_text_only() -> None:
    request = assemble_request(
        "Be brief.",
        (ConversationTurn(Role.USER, "hi"), ConversationTurn(Role.ASSISTANT, "hello")),
        "again",
        sampler=SamplerConfig(temperature=0.7, top_p=0.95, max_output_tokens=512),
    )
    payload = build_chat_payload("google/gemma-3n-E4B-it", request)
    assert payload["model"] == "google/gemma-3n-E4B-it"
    assert [m["role"] for m in payload["messages"]] == ["system", "user", "assistant", "user"]
    assert payload["messages"][-1]["content"] == "again"
    assert payload["temperature"] == 0.7
    assert payload["top_p"] == 0.95
    assert payload["max_tokens"] == 512


def test_build_chat_payload_with_audio_omits_unset_sampler_fields() -> None:
    audio = AudioInput(samples=np.zeros(160, dtype=np.float32), sample_rate=16000, channels=1)
    request = assemble_request(
        "Transcribe.",
        (),
        "Transcribe this.",
        sampler=SamplerConfig(temperature=0.0, top_p=None, max_output_tokens=None),
        attachment=audio,
    )
    payload = build_chat_payload("m", request)
    content = payload["messages"][-1]["content"]
    assert content[0] == {"type": "text", "text": "Transcribe this."}
    assert content[1]["type"] == "input_audio"
    assert content[1]["input_audio"]["format"] == "wav"
    assert payload["messages"][0]["content"] == "Transcribe."
    assert "top_p" not in payload
    assert "max_tokens" not in payload


def test_extract_message_text() -> None:
    assert extract_message_text({"choices": [{"message": {"content": "hi"}}]}) == "hi"
    assert extract_message_text({"choices": [{"message": {"content": None}}]}) == ""
    parts = {"choices": [{"message": {"content": [{"text": "a"}, {"text": "b"}]}}]}
    assert extract_message_text(parts) == "ab"


def test_extract_message_text_malformed() -> None:
    with pytest.raises(InferenceError) as excinfo:
        extract_message_text({"error": "nope"})
    assert excinfo.value.kind == "malformed"


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (server_module._TransportError("slow", timed_out=True), "timeout"),
        (server_module._TransportError("full", status=503), "resource_exhausted"),
        (server_module._TransportError("bad", status=400), "malformed"),
        (server_module._TransportError("boom", status=500), "runtime"),
        (server_module._TransportError("refused"), "runtime"),
    ],
)
def test_transport_errors_map_to_inference_kinds(error, kind) -> None:
    assert server_module._inference_error(error).kind == kind


def test_load_unreachable_server(monkeypatch) -> None:
    runtime = ServerRuntime(api_base="http://127.0.0.1:9/v1", timeout_s=1)

    def refuse(method, path, payload):
        raise server_module._TransportError("request failed: connection refused")

    monkeypatch.setattr(runtime, "_request_json", refuse)
    with pytest.raises(ModelLoadError, match="Cannot reach inference server"):
        asyncio.run(runtime.load(resolve(ModelPreset.GEMMA_E4B)))


def test_load_and_infer(monkeypatch) -> None:
    runtime = ServerRuntime(api_base="http://localhost:1234/v1/", api_key="secret", timeout_s=5)
    calls: list[tuple[str, str]] = []

    def fake_request(method, path, payload):
        calls.append((method, path))
        if path == "/models":
            return 200, {"data": [{"id": "google/gemma-3n-E4B-it"}]}
        return 200, {"choices": [{"message": {"content": "  hello  "}}], "usage": {"total_tokens": 9}}

    monkeypatch.setattr(runtime, "_request_json", fake_request)
    handle = asyncio.run(runtime.load(resolve(ModelPreset.GEMMA_E4B)))
    assert runtime.api_base == "http://localhost:1234/v1"
    assert handle.state == {"served_models": ["google/gemma-3n-E4B-it"]}

    request = assemble_request("sys", (), "hi", sampler=SamplerConfig())
    reply = asyncio.run(runtime.infer(handle, request))
    assert reply.text == "  hello  "
    assert reply.usage == {"total_tokens": 9}
    assert calls == [("GET", "/models"), ("POST", "/chat/completions")]


def test_infer_timeout(monkeypatch) -> None:
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)

    def fake_request(method, path, payload):
        if path == "/models":
            return 200, {"data": []}
        raise server_module._TransportError("request timed out", timed_out=True)

    monkeypatch.setattr(runtime, "_request_json", fake_request)
    handle = asyncio.run(runtime.load(resolve(ModelPreset.PHI_35_MINI)))
    request = assemble_request("sys", (), "hi", sampler=SamplerConfig())
    with pytest.raises(InferenceError) as excinfo:
        asyncio.run(runtime.infer(handle, request))
    assert excinfo.value.kind == "timeout"


def test_generate_image_saves_png(monkeypatch, tmp_path: Path) -> None:
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)
    buffer = BytesIO()
    Image.new("RGB", (64, 48), (10, 20, 30)).save(buffer, format="PNG")
    blob = base64.b64encode(buffer.getvalue()).decode("ascii")
    seen: dict = {}

    def fake_request(method, path, payload):
        if path == "/models":
            return 200, {"data": []}
        seen.update(payload)
        return 200, {"data": [{"b64_json": blob}]}

    monkeypatch.setattr(runtime, "_request_json", fake_request)
    handle = asyncio.run(runtime.load(resolve(ModelPreset.FLUX_SCHNELL)))
    artifact = asyncio.run(runtime.generate_image(handle, "castle", size="64x48", seed=3, out_dir=tmp_path))
    assert seen["width"] == 64 and seen["height"] == 48 and seen["seed"] == 3
    assert artifact.image_path.exists()
    assert (artifact.width, artifact.height) == (64, 48)


def test_generate_image_without_data_is_malformed(monkeypatch, tmp_path: Path) -> None:
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)

    def fake_request(method, path, payload):
        return 200, {"data": []}

    monkeypatch.setattr(runtime, "_request_json", fake_request)
    handle = asyncio.run(runtime.load(resolve(ModelPreset.FLUX_SCHNELL)))
    with pytest.raises(InferenceError) as excinfo:
        asyncio.run(runtime.generate_image(handle, "castle", out_dir=tmp_path))
    assert excinfo.value.kind == "malformed"


class _FakeResponse:
    def __init__(self, body: bytes, status: int = 200) -> None:
        self.body = body
        self.status = status

    def __enter__(self) -> "_FakeResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def read(self) -> bytes:
        return self.body


def test_dropped_connection_surfaces_as_inference_error(monkeypatch) -> None:
    def hang_up(req, timeout=None):
        raise http.client.RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr(server_module, "urlopen", hang_up)
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)
    handle = ModelHandle(handle_id="h-1", config=resolve(ModelPreset.GEMMA_E4B), runtime="server")
    session = ChatSession(runtime, handle)

    with pytest.raises(InferenceError) as excinfo:
        asyncio.run(session.send("hi"))

    assert excinfo.value.kind == "runtime"
    assert "connection lost" in str(excinfo.value)
    assert len(session.history) == 0


def test_connection_reset_during_load(monkeypatch) -> None:
    def reset(req, timeout=None):
        raise ConnectionResetError(104, "Connection reset by peer")

    monkeypatch.setattr(server_module, "urlopen", reset)
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)
    with pytest.raises(ModelLoadError):
        asyncio.run(runtime.load(resolve(ModelPreset.GEMMA_E4B)))


def test_non_utf8_response_is_malformed(monkeypatch) -> None:
    monkeypatch.setattr(server_module, "urlopen", lambda req, timeout=None: _FakeResponse(b"\xff\xfe\xfa"))
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)
    handle = ModelHandle(handle_id="h-1", config=resolve(ModelPreset.GEMMA_E4B), runtime="server")
    request = assemble_request("sys", (), "hi", sampler=SamplerConfig())

    with pytest.raises(InferenceError) as excinfo:
        asyncio.run(runtime.infer(handle, request))

    assert excinfo.value.kind == "malformed"


@pytest.mark.parametrize("body", [b'{"data": null}', b'{"data": {"id": "x"}}', b'[{"id": "x"}]', b"not json"])
def test_unexpected_model_listing_fails_load(monkeypatch, body: bytes) -> None:
    monkeypatch.setattr(server_module, "urlopen", lambda req, timeout=None: _FakeResponse(body))
    runtime = ServerRuntime(api_base="http://localhost:1234/v1", timeout_s=1)
    with pytest.raises(ModelLoadError, match="unexpected model listing"):
        asyncio.run(runtime.load(resolve(ModelPreset.GEMMA_E4B)))
