"""Shared model loading for pipelines and sessions."""

from __future__ import annotations

import time

from ..models.registry import LoadConfig
from ..runs.events import EventWriter, emit
from ..runtime.base import ModelHandle, Runtime


async def load_model(
    runtime: Runtime,
    config: LoadConfig,
    *,
    purpose: str,
    events: EventWriter | None = None,
) -> ModelHandle:
    start = time.monotonic()
    handle = await runtime.load(config)
    emit(
        events,
        "model_loaded",
        purpose=purpose,
        runtime=runtime.name,
        config=config.to_dict(),
        load_s=time.monotonic() - start,
    )
    return handle
