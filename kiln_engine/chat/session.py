"""Multi-turn chat session over one loaded model."""

from __future__ import annotations

from ..errors import KilnError, SessionBusyError
from ..models.registry import DEFAULT_CHAT_PRESET, ModelPreset, resolve
from ..pipelines.base import load_model
from ..runs.events import EventWriter, emit
from ..runtime.base import ModelHandle, Runtime
from .conversation import ConversationLog, ConversationTurn
from .requests import SamplerConfig, assemble_request, run_request

DEFAULT_SYSTEM_PROMPT = "You are a helpful, concise assistant. Answer clearly and accurately."
DEFAULT_CHAT_SAMPLER = SamplerConfig(temperature=0.7, top_p=0.95, max_output_tokens=512)
EMPTY_RESPONSE = "(empty response)"

IDLE = "idle"
AWAITING_RESPONSE = "awaiting_response"


class ChatSession:
    def __init__(
        self,
        runtime: Runtime,
        handle: ModelHandle,
        *,
        system_prompt: str | None = None,
        sampler: SamplerConfig | None = None,
        events: EventWriter | None = None,
    ) -> None:
        self.runtime = runtime
        self.handle = handle
        self.system_prompt = system_prompt or DEFAULT_SYSTEM_PROMPT
        self.sampler = sampler or DEFAULT_CHAT_SAMPLER
        self.events = events
        self.state = IDLE
        self._log = ConversationLog()

    @classmethod
    async def from_preset(
        cls,
        runtime: Runtime,
        preset: ModelPreset = DEFAULT_CHAT_PRESET,
        *,
        system_prompt: str | None = None,
        sampler: SamplerConfig | None = None,
        events: EventWriter | None = None,
    ) -> "ChatSession":
        handle = await load_model(runtime, resolve(preset), purpose="chat", events=events)
        return cls(runtime, handle, system_prompt=system_prompt, sampler=sampler, events=events)

    @property
    def history(self) -> tuple[ConversationTurn, ...]:
        return self._log.snapshot()

    async def send(self, user_text: str) -> str:
        if self.state != IDLE:
            raise SessionBusyError("A chat turn is already in flight; wait for it before sending another.")
        self.state = AWAITING_RESPONSE
        try:
            request = assemble_request(self.system_prompt, self._log, user_text, sampler=self.sampler)
            result = await run_request(self.runtime, self.handle, request)
        except KilnError as exc:
            emit(self.events, "chat_turn_failed", stage=exc.stage, error=str(exc), turns=len(self._log))
            raise
        finally:
            self.state = IDLE
        assistant = result.text or EMPTY_RESPONSE
        self._log.append_exchange(user_text, assistant)
        emit(self.events, "chat_turn", turns=len(self._log), inference_s=result.inference_s)
        return assistant

    def clear(self) -> None:
        if self.state != IDLE:
            raise SessionBusyError("Cannot clear history while a chat turn is in flight.")
        self._log.clear()
        emit(self.events, "chat_cleared")

    def close(self) -> None:
        self.runtime.close(self.handle)
