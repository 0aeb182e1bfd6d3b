from __future__ import annotations


class OpenCodeStateError(Exception):
    """Base class for errors raised by this package."""


class StructuralDecodeError(OpenCodeStateError):
    """Payload is not valid JSON or a required field is missing or ill-typed."""

    def __init__(self, message: str, *, path: str = ""):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class InvalidTransition(OpenCodeStateError):
    """A tool or session status moved backwards."""

    def __init__(self, subject: str, current: str, proposed: str):
        self.subject = subject
        self.current = current
        self.proposed = proposed
        super().__init__(f"{subject}: rejected transition {current!r} -> {proposed!r}")


class ApiError(OpenCodeStateError):
    def __init__(self, method: str, path: str, status_code: int, body: str):
        self.method = method
        self.path = path
        self.status_code = status_code
        self.body = body
        super().__init__(f"{method} {path} failed with HTTP {status_code}: {body[:200]}")
