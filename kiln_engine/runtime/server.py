"""Runtime backed by a local OpenAI-compatible inference server."""

from __future__ import annotations

import asyncio
import base64
import http.client
import json
import os
import socket
import uuid
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from PIL import Image, UnidentifiedImageError

from ..errors import InferenceError, ModelLoadError
from ..models.registry import LoadConfig
from ..utils import getenv_float
from .base import ImageArtifact, ModelHandle, RuntimeReply, build_image_path, resolve_size

if TYPE_CHECKING:
    from ..chat.requests import GenerationRequest

DEFAULT_SERVER_URL = "http://localhost:1234/v1"
_RESOURCE_EXHAUSTED_CODES = {429, 503, 507}


class _TransportError(Exception):
    def __init__(
        self,
        message: str,
        status: int | None = None,
        timed_out: bool = False,
        malformed: bool = False,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.timed_out = timed_out
        self.malformed = malformed


class ServerRuntime:
    """Talks to a server such as ``mistralrs-server`` or LM Studio.

    The server owns the weights; ``load`` checks that it is reachable and
    records which model ids it serves.
    """

    name = "server"

    def __init__(
        self,
        api_base: str | None = None,
        api_key: str | None = None,
        timeout_s: float | None = None,
    ) -> None:
        base = api_base or os.getenv("KILN_SERVER_URL") or DEFAULT_SERVER_URL
        self.api_base = base.rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("KILN_API_KEY")
        self.timeout_s = timeout_s if timeout_s is not None else getenv_float("KILN_TIMEOUT_S", 300.0)

    async def load(self, config: LoadConfig) -> ModelHandle:
        try:
            _, listing = await asyncio.to_thread(self._request_json, "GET", "/models", None)
        except _TransportError as exc:
            raise ModelLoadError(f"Cannot reach inference server at {self.api_base}: {exc}") from exc
        data = listing.get("data")
        if not isinstance(data, list):
            raise ModelLoadError(f"Inference server at {self.api_base} returned an unexpected model listing.")
        served = [str(item.get("id")) for item in data if isinstance(item, Mapping)]
        return ModelHandle(
            handle_id=str(uuid.uuid4()),
            config=config,
            runtime=self.name,
            state={"served_models": served},
        )

    async def infer(self, handle: ModelHandle, request: GenerationRequest) -> RuntimeReply:
        if handle.closed:
            raise InferenceError(f"Model handle {handle.handle_id} is closed.")
        payload = build_chat_payload(handle.config.model_id, request)
        try:
            _, response = await asyncio.to_thread(self._request_json, "POST", "/chat/completions", payload)
        except _TransportError as exc:
            raise _inference_error(exc) from exc
        return RuntimeReply(text=extract_message_text(response), usage=response.get("usage"), raw=response)

    async def generate_image(
        self,
        handle: ModelHandle,
        prompt: str,
        *,
        size: str = "1024x1024",
        seed: int | None = None,
        out_dir: Path | None = None,
    ) -> ImageArtifact:
        if handle.closed:
            raise InferenceError(f"Model handle {handle.handle_id} is closed.")
        width, height = resolve_size(size)
        payload: dict[str, Any] = {
            "model": handle.config.model_id,
            "prompt": prompt,
            "n": 1,
            "response_format": "b64_json",
            "width": width,
            "height": height,
        }
        if seed is not None:
            payload["seed"] = seed
        try:
            _, response = await asyncio.to_thread(self._request_json, "POST", "/images/generations", payload)
        except _TransportError as exc:
            raise _inference_error(exc) from exc
        image_bytes = _extract_image_bytes(response)
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as exc:
            raise InferenceError(f"Server returned unreadable image data: {exc}", kind="malformed") from exc
        image_path = build_image_path(out_dir, seed)
        image.save(image_path)
        return ImageArtifact(
            image_path=image_path,
            width=image.width,
            height=image.height,
            seed=seed,
            metadata={"model": handle.config.model_id},
        )

    def close(self, handle: ModelHandle) -> None:
        handle.closed = True

    def _request_json(self, method: str, path: str, payload: Mapping[str, Any] | None) -> tuple[int, dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        body = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = Request(f"{self.api_base}{path}", data=body, headers=headers, method=method)
        try:
            with urlopen(req, timeout=self.timeout_s) as response:
                status_code = int(getattr(response, "status", 200))
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace") if exc.fp else str(exc)
            raise _TransportError(f"server error ({exc.code}): {raw}", status=exc.code) from exc
        except URLError as exc:
            timed_out = isinstance(exc.reason, (socket.timeout, TimeoutError))
            raise _TransportError(f"request failed: {exc.reason}", timed_out=timed_out) from exc
        except (socket.timeout, TimeoutError) as exc:
            raise _TransportError(f"request timed out after {self.timeout_s:.0f}s", timed_out=True) from exc
        except (http.client.HTTPException, ConnectionError) as exc:
            raise _TransportError(f"connection lost: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise _TransportError(f"response is not valid UTF-8: {exc}", malformed=True) from exc
        try:
            payload_json = json.loads(raw)
        except json.JSONDecodeError:
            payload_json = {"raw": raw}
        if not isinstance(payload_json, dict):
            payload_json = {"raw": payload_json}
        return status_code, payload_json


def build_chat_payload(model: str, request: GenerationRequest) -> dict[str, Any]:
    messages: list[dict[str, Any]] = []
    last = len(request.messages) - 1
    for idx, turn in enumerate(request.messages):
        if idx == last and request.attachment is not None:
            content: Any = [{"type": "text", "text": turn.text}, dict(request.attachment.part)]
        else:
            content = turn.text
        messages.append({"role": turn.role.value, "content": content})
    payload: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "temperature": request.sampler.temperature,
    }
    if request.sampler.top_p is not None:
        payload["top_p"] = request.sampler.top_p
    if request.sampler.max_output_tokens is not None:
        payload["max_tokens"] = request.sampler.max_output_tokens
    return payload


def extract_message_text(response: Mapping[str, Any]) -> str:
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        raise InferenceError(f"Server response has no choices: {str(response)[:200]}", kind="malformed")
    message = choices[0].get("message") if isinstance(choices[0], Mapping) else None
    if not isinstance(message, Mapping):
        raise InferenceError("Server response choice has no message.", kind="malformed")
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, list):
        parts = [str(part.get("text", "")) for part in content if isinstance(part, Mapping)]
        return "".join(parts)
    return str(content)


def _extract_image_bytes(response: Mapping[str, Any]) -> bytes:
    data = response.get("data")
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        blob = data[0].get("b64_json")
        if isinstance(blob, str) and blob:
            try:
                return base64.b64decode(blob)
            except ValueError as exc:
                raise InferenceError(f"Server returned invalid base64 image: {exc}", kind="malformed") from exc
    raise InferenceError("Server returned no image data.", kind="malformed")


def _inference_error(exc: _TransportError) -> InferenceError:
    if exc.timed_out:
        return InferenceError(f"Inference timed out: {exc}", kind="timeout")
    if exc.malformed:
        return InferenceError(f"Inference server sent a malformed response: {exc}", kind="malformed")
    if exc.status in _RESOURCE_EXHAUSTED_CODES:
        return InferenceError(f"Inference server out of capacity: {exc}", kind="resource_exhausted")
    if exc.status is not None and 400 <= exc.status < 500:
        return InferenceError(f"Inference request rejected: {exc}", kind="malformed")
    return InferenceError(f"Inference failed: {exc}")
