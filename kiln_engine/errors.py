"""Error taxonomy for the kiln engine."""

from __future__ import annotations


class KilnError(RuntimeError):
    """Base class for errors surfaced by the generation layer."""

    stage = "kiln"


class ConfigurationError(KilnError):
    stage = "configuration"


class ModelLoadError(KilnError):
    stage = "model load"


class InferenceError(KilnError):
    stage = "inference"

    KINDS = ("timeout", "resource_exhausted", "malformed", "runtime")

    def __init__(self, message: str, kind: str = "runtime") -> None:
        super().__init__(message)
        self.kind = kind if kind in self.KINDS else "runtime"


class AttachmentError(KilnError):
    stage = "attachment"


class AudioDecodeError(AttachmentError):
    stage = "audio decode"


class SessionBusyError(KilnError):
    stage = "chat"
