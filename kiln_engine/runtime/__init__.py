"""Runtime selection."""

from __future__ import annotations

import os

from ..errors import ConfigurationError
from .base import Runtime
from .dryrun import DryRunRuntime
from .server import ServerRuntime

RUNTIME_CHOICES = ("dryrun", "server")


def default_runtime(name: str | None = None) -> Runtime:
    selected = (name or os.getenv("KILN_RUNTIME") or "server").strip().lower()
    if selected == "dryrun":
        return DryRunRuntime()
    if selected == "server":
        return ServerRuntime()
    raise ConfigurationError(f"Unknown runtime '{selected}' (choices: {', '.join(RUNTIME_CHOICES)}).")
