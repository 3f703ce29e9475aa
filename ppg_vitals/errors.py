"""Exceptions raised by the engine and its camera collaborator."""

from __future__ import annotations


class CaptureUnavailable(RuntimeError):
    """The camera could not be opened or stopped delivering frames."""


class SessionError(RuntimeError):
    """A measurement-session operation is not valid in the current state."""
