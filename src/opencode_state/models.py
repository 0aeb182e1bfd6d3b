from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from loguru import logger

from opencode_state.errors import StructuralDecodeError
from opencode_state.wire import (
    compact,
    opt_float,
    opt_int,
    opt_object,
    opt_str,
    require_int,
    require_object,
    require_str,
)


@dataclass(frozen=True)
class TokenUsage:
    input: int | None = None
    output: int | None = None
    reasoning: int | None = None
    cache_read: int | None = None
    cache_write: int | None = None

    @classmethod
    def from_dict(cls, obj: Any, what: str = "tokens") -> TokenUsage:
        obj = require_object(obj, what)
        cache = opt_object(obj, "cache", what) or {}
        return cls(
            input=opt_int(obj, "input", what),
            output=opt_int(obj, "output", what),
            reasoning=opt_int(obj, "reasoning", what),
            cache_read=opt_int(cache, "read", f"{what}.cache"),
            cache_write=opt_int(cache, "write", f"{what}.cache"),
        )

    def to_dict(self) -> dict[str, Any]:
        cache = compact({"read": self.cache_read, "write": self.cache_write})
        return compact(
            {
                "input": self.input,
                "output": self.output,
                "reasoning": self.reasoning,
                "cache": cache or None,
            }
        )


@dataclass(frozen=True)
class ErrorInfo:
    """Structured server error: ``{"name", "data": {"message", "statusCode"}}``."""

    name: str | None = None
    message: str | None = None
    status_code: int | None = None

    @classmethod
    def from_dict(cls, obj: Any, what: str = "error") -> ErrorInfo:
        obj = require_object(obj, what)
        data = opt_object(obj, "data", what) or {}
        return cls(
            name=opt_str(obj, "name", what),
            message=opt_str(data, "message", f"{what}.data"),
            status_code=opt_int(data, "statusCode", f"{what}.data"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = compact({"message": self.message, "statusCode": self.status_code})
        return compact({"name": self.name, "data": data or None})


@dataclass(frozen=True)
class SessionTime:
    created: int
    updated: int


@dataclass(frozen=True)
class ShareInfo:
    url: str | None = None


@dataclass(frozen=True)
class Session:
    id: str
    title: str | None = None
    version: str | None = None
    project_id: str | None = None
    directory: str | None = None
    time: SessionTime | None = None
    parent_id: str | None = None
    share: ShareInfo | None = None

    @classmethod
    def from_dict(cls, obj: Any, what: str = "session") -> Session:
        obj = require_object(obj, what)
        time = opt_object(obj, "time", what)
        share = opt_object(obj, "share", what)
        parent_id = opt_str(obj, "parent_id", what)
        if parent_id is None:
            parent_id = opt_str(obj, "parentID", what)
        return cls(
            id=require_str(obj, "id", what),
            title=opt_str(obj, "title", what),
            version=opt_str(obj, "version", what),
            project_id=opt_str(obj, "projectID", what),
            directory=opt_str(obj, "directory", what),
            time=SessionTime(
                created=require_int(time, "created", f"{what}.time"),
                updated=require_int(time, "updated", f"{what}.time"),
            )
            if time is not None
            else None,
            parent_id=parent_id,
            share=ShareInfo(url=opt_str(share, "url", f"{what}.share")) if share is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return compact(
            {
                "id": self.id,
                "title": self.title,
                "version": self.version,
                "projectID": self.project_id,
                "directory": self.directory,
                "time": {"created": self.time.created, "updated": self.time.updated} if self.time else None,
                "parent_id": self.parent_id,
                "share": compact({"url": self.share.url}) if self.share else None,
            }
        )


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class MessageTime:
    created: int
    completed: int | None = None


@dataclass(frozen=True)
class MessagePath:
    cwd: str | None = None
    root: str | None = None


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    role: MessageRole
    time: MessageTime | None = None
    parent_id: str | None = None
    model_id: str | None = None
    provider_id: str | None = None
    mode: str | None = None
    agent: str | None = None
    path: MessagePath | None = None
    cost: float | None = None
    tokens: TokenUsage | None = None
    finish: str | None = None

    @classmethod
    def from_dict(cls, obj: Any, what: str = "message") -> Message:
        obj = require_object(obj, what)
        raw_role = require_str(obj, "role", what)
        try:
            role = MessageRole(raw_role)
        except ValueError as ex:
            raise StructuralDecodeError(f"unknown role {raw_role!r}", path=what) from ex
        time = opt_object(obj, "time", what)
        path = opt_object(obj, "path", what)
        tokens = opt_object(obj, "tokens", what)
        return cls(
            id=require_str(obj, "id", what),
            session_id=require_str(obj, "sessionID", what),
            role=role,
            time=MessageTime(
                created=require_int(time, "created", f"{what}.time"),
                completed=opt_int(time, "completed", f"{what}.time"),
            )
            if time is not None
            else None,
            parent_id=opt_str(obj, "parentID", what),
            model_id=opt_str(obj, "modelID", what),
            provider_id=opt_str(obj, "providerID", what),
            mode=opt_str(obj, "mode", what),
            agent=opt_str(obj, "agent", what),
            path=MessagePath(
                cwd=opt_str(path, "cwd", f"{what}.path"),
                root=opt_str(path, "root", f"{what}.path"),
            )
            if path is not None
            else None,
            cost=opt_float(obj, "cost", what),
            tokens=TokenUsage.from_dict(tokens, f"{what}.tokens") if tokens is not None else None,
            finish=opt_str(obj, "finish", what),
        )

    def to_dict(self) -> dict[str, Any]:
        return compact(
            {
                "id": self.id,
                "sessionID": self.session_id,
                "role": self.role.value,
                "time": compact({"created": self.time.created, "completed": self.time.completed})
                if self.time
                else None,
                "parentID": self.parent_id,
                "modelID": self.model_id,
                "providerID": self.provider_id,
                "mode": self.mode,
                "agent": self.agent,
                "path": compact({"cwd": self.path.cwd, "root": self.path.root}) if self.path else None,
                "cost": self.cost,
                "tokens": self.tokens.to_dict() if self.tokens else None,
                "finish": self.finish,
            }
        )


class SessionStatusType(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    RETRY = "retry"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SessionStatus:
    type: SessionStatusType
    attempt: int | None = None
    message: str | None = None
    next: int | None = None
    # Wire value when ``type`` is UNKNOWN.
    raw_type: str | None = None

    @classmethod
    def idle(cls) -> SessionStatus:
        return cls(SessionStatusType.IDLE)

    @classmethod
    def from_dict(cls, obj: Any, what: str = "status") -> SessionStatus:
        obj = require_object(obj, what)
        raw_type = require_str(obj, "type", what)
        try:
            status_type = SessionStatusType(raw_type)
        except ValueError:
            logger.debug(f"{what}: unrecognised session status {raw_type!r}")
            status_type = SessionStatusType.UNKNOWN
        return cls(
            type=status_type,
            raw_type=raw_type if status_type == SessionStatusType.UNKNOWN else None,
            attempt=opt_int(obj, "attempt", what),
            message=opt_str(obj, "message", what),
            next=opt_int(obj, "next", what),
        )

    def to_dict(self) -> dict[str, Any]:
        status_type = self.raw_type if self.type == SessionStatusType.UNKNOWN and self.raw_type else self.type.value
        return compact({"type": status_type, "attempt": self.attempt, "message": self.message, "next": self.next})
