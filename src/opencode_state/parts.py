"""Message parts: the tagged union keyed by the ``type`` discriminant.

Each kind is its own frozen dataclass; ``decode_part_dict`` dispatches on the
discriminant through ``PART_TYPES`` and falls back to ``UnknownPart`` so new
server-side kinds never break decoding.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

from loguru import logger

from opencode_state.dynamic_value import DynamicValue, decode_map, encode_map
from opencode_state.errors import InvalidTransition
from opencode_state.models import ErrorInfo, TokenUsage
from opencode_state.wire import (
    compact,
    load_object,
    opt_bool,
    opt_float,
    opt_int,
    opt_list,
    opt_object,
    opt_str,
    require_object,
    require_str,
)


class PartKind(str, Enum):
    TEXT = "text"
    TOOL = "tool"
    REASONING = "reasoning"
    FILE = "file"
    STEP_START = "step-start"
    STEP_FINISH = "step-finish"
    SNAPSHOT = "snapshot"
    PATCH = "patch"
    AGENT = "agent"
    SUBTASK = "subtask"
    RETRY = "retry"
    COMPACTION = "compaction"
    UNKNOWN = "unknown"


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    UNKNOWN = "unknown"

    @property
    def is_running(self) -> bool:
        return self in (ToolStatus.PENDING, ToolStatus.RUNNING)

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.ERROR)


_TOOL_STATUS_RANK = {
    ToolStatus.PENDING: 0,
    ToolStatus.RUNNING: 1,
    ToolStatus.UNKNOWN: 1,
    ToolStatus.COMPLETED: 2,
    ToolStatus.ERROR: 2,
}


def check_tool_transition(subject: str, current: ToolStatus, proposed: ToolStatus) -> None:
    """Raise ``InvalidTransition`` unless ``proposed`` is ``current`` or strictly later.

    A status this client does not recognise ranks with ``running``: it may
    follow or precede ``running`` but never replaces a terminal status.
    """
    if proposed == current:
        return
    if ToolStatus.UNKNOWN in (current, proposed) and not current.is_terminal:
        return
    if _TOOL_STATUS_RANK[proposed] <= _TOOL_STATUS_RANK[current]:
        raise InvalidTransition(subject, current.value, proposed.value)


@dataclass(frozen=True)
class PartTime:
    start: int | None = None
    end: int | None = None
    created: int | None = None

    @classmethod
    def from_dict(cls, obj: dict[str, Any], what: str) -> PartTime:
        return cls(
            start=opt_int(obj, "start", what),
            end=opt_int(obj, "end", what),
            created=opt_int(obj, "created", what),
        )

    def to_dict(self) -> dict[str, Any]:
        return compact({"start": self.start, "end": self.end, "created": self.created})


@dataclass(frozen=True)
class ToolTime:
    start: int | None = None
    end: int | None = None
    compacted: int | None = None


@dataclass(frozen=True)
class Attachment:
    """File record attached to a tool result; every field is optional on the wire."""

    id: str | None = None
    session_id: str | None = None
    message_id: str | None = None
    type: str | None = None
    mime: str | None = None
    filename: str | None = None
    url: str | None = None

    @classmethod
    def from_dict(cls, obj: Any, what: str) -> Attachment:
        obj = require_object(obj, what)
        return cls(
            id=opt_str(obj, "id", what),
            session_id=opt_str(obj, "sessionID", what),
            message_id=opt_str(obj, "messageID", what),
            type=opt_str(obj, "type", what),
            mime=opt_str(obj, "mime", what),
            filename=opt_str(obj, "filename", what),
            url=opt_str(obj, "url", what),
        )

    def to_dict(self) -> dict[str, Any]:
        return compact(
            {
                "type": self.type,
                "id": self.id,
                "sessionID": self.session_id,
                "messageID": self.message_id,
                "mime": self.mime,
                "filename": self.filename,
                "url": self.url,
            }
        )


@dataclass(frozen=True)
class ToolState:
    status: ToolStatus
    input: dict[str, DynamicValue] | None = None
    output: str | None = None
    title: str | None = None
    error: str | None = None
    metadata: dict[str, DynamicValue] | None = None
    time: ToolTime | None = None
    attachments: tuple[Attachment, ...] | None = None
    # Wire value when ``status`` is UNKNOWN.
    raw_status: str | None = None

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_dict(cls, obj: Any, what: str = "state") -> ToolState:
        obj = require_object(obj, what)
        raw_status = require_str(obj, "status", what)
        try:
            status = ToolStatus(raw_status)
        except ValueError:
            logger.debug(f"{what}: unrecognised tool status {raw_status!r}")
            status = ToolStatus.UNKNOWN
        tool_input = opt_object(obj, "input", what)
        metadata = opt_object(obj, "metadata", what)
        time = opt_object(obj, "time", what)
        attachments = opt_list(obj, "attachments", what)
        return cls(
            status=status,
            raw_status=raw_status if status == ToolStatus.UNKNOWN else None,
            input=decode_map(tool_input) if tool_input is not None else None,
            output=opt_str(obj, "output", what),
            title=opt_str(obj, "title", what),
            error=opt_str(obj, "error", what),
            metadata=decode_map(metadata) if metadata is not None else None,
            time=ToolTime(
                start=opt_int(time, "start", f"{what}.time"),
                end=opt_int(time, "end", f"{what}.time"),
                compacted=opt_int(time, "compacted", f"{what}.time"),
            )
            if time is not None
            else None,
            attachments=tuple(
                Attachment.from_dict(item, f"{what}.attachments[{i}]") for i, item in enumerate(attachments)
            )
            if attachments is not None
            else None,
        )

    def to_dict(self) -> dict[str, Any]:
        status = self.raw_status if self.status == ToolStatus.UNKNOWN and self.raw_status else self.status.value
        time = None
        if self.time is not None:
            time = compact({"start": self.time.start, "end": self.time.end, "compacted": self.time.compacted})
        return compact(
            {
                "status": status,
                "input": encode_map(self.input) if self.input is not None else None,
                "output": self.output,
                "title": self.title,
                "error": self.error,
                "metadata": encode_map(self.metadata) if self.metadata is not None else None,
                "time": time,
                "attachments": [a.to_dict() for a in self.attachments] if self.attachments is not None else None,
            }
        )


@dataclass(frozen=True, kw_only=True)
class _PartBase:
    kind: ClassVar[PartKind]

    id: str
    session_id: str | None = None
    message_id: str | None = None
    time: PartTime | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        return {}

    def _fields_to(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True, kw_only=True)
class TextPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.TEXT

    text: str = ""
    synthetic: bool | None = None
    ignored: bool | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        return {
            "text": opt_str(obj, "text", what) or "",
            "synthetic": opt_bool(obj, "synthetic", what),
            "ignored": opt_bool(obj, "ignored", what),
        }

    def _fields_to(self) -> dict[str, Any]:
        return {"text": self.text, "synthetic": self.synthetic, "ignored": self.ignored}


@dataclass(frozen=True, kw_only=True)
class ReasoningPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.REASONING

    text: str = ""

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        return {"text": opt_str(obj, "text", what) or ""}

    def _fields_to(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True, kw_only=True)
class ToolPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.TOOL

    call_id: str | None = None
    tool: str | None = None
    state: ToolState | None = None

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        state = obj.get("state")
        return {
            "call_id": opt_str(obj, "callID", what),
            "tool": opt_str(obj, "tool", what),
            "state": ToolState.from_dict(state, f"{what}.state") if state is not None else None,
        }

    def _fields_to(self) -> dict[str, Any]:
        return {
            "callID": self.call_id,
            "tool": self.tool,
            "state": self.state.to_dict() if self.state is not None else None,
        }


@dataclass(frozen=True, kw_only=True)
class FilePart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.FILE

    mime: str | None = None
    filename: str | None = None
    url: str | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        return {
            "mime": opt_str(obj, "mime", what),
            "filename": opt_str(obj, "filename", what),
            "url": opt_str(obj, "url", what),
        }

    def _fields_to(self) -> dict[str, Any]:
        return {"mime": self.mime, "filename": self.filename, "url": self.url}


@dataclass(frozen=True, kw_only=True)
class _StepPart(_PartBase):
    snapshot: str | None = None
    reason: str | None = None
    cost: float | None = None
    tokens: TokenUsage | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        tokens = obj.get("tokens")
        return {
            "snapshot": opt_str(obj, "snapshot", what),
            "reason": opt_str(obj, "reason", what),
            "cost": opt_float(obj, "cost", what),
            "tokens": TokenUsage.from_dict(tokens, f"{what}.tokens") if tokens is not None else None,
        }

    def _fields_to(self) -> dict[str, Any]:
        return {
            "snapshot": self.snapshot,
            "reason": self.reason,
            "cost": self.cost,
            "tokens": self.tokens.to_dict() if self.tokens is not None else None,
        }


@dataclass(frozen=True, kw_only=True)
class StepStartPart(_StepPart):
    kind: ClassVar[PartKind] = PartKind.STEP_START


@dataclass(frozen=True, kw_only=True)
class StepFinishPart(_StepPart):
    kind: ClassVar[PartKind] = PartKind.STEP_FINISH


@dataclass(frozen=True, kw_only=True)
class AgentPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.AGENT

    name: str | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        return {"name": opt_str(obj, "name", what)}

    def _fields_to(self) -> dict[str, Any]:
        return {"name": self.name}


@dataclass(frozen=True, kw_only=True)
class SubtaskPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.SUBTASK

    prompt: str | None = None
    description: str | None = None
    agent: str | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        return {
            "prompt": opt_str(obj, "prompt", what),
            "description": opt_str(obj, "description", what),
            "agent": opt_str(obj, "agent", what),
        }

    def _fields_to(self) -> dict[str, Any]:
        return {"prompt": self.prompt, "description": self.description, "agent": self.agent}


@dataclass(frozen=True, kw_only=True)
class RetryPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.RETRY

    attempt: int | None = None
    error: ErrorInfo | None = None

    @classmethod
    def _fields_from(cls, obj: dict[str, Any], what: str) -> dict[str, Any]:
        error = obj.get("error")
        return {
            "attempt": opt_int(obj, "attempt", what),
            "error": ErrorInfo.from_dict(error, f"{what}.error") if error is not None else None,
        }

    def _fields_to(self) -> dict[str, Any]:
        return {"attempt": self.attempt, "error": self.error.to_dict() if self.error is not None else None}


@dataclass(frozen=True, kw_only=True)
class SnapshotPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.SNAPSHOT


@dataclass(frozen=True, kw_only=True)
class PatchPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.PATCH


@dataclass(frozen=True, kw_only=True)
class CompactionPart(_PartBase):
    kind: ClassVar[PartKind] = PartKind.COMPACTION


@dataclass(frozen=True, kw_only=True)
class UnknownPart(_PartBase):
    """A part whose discriminant this client does not know; only identity survives."""

    kind: ClassVar[PartKind] = PartKind.UNKNOWN

    raw_type: str = PartKind.UNKNOWN.value


Part = Union[
    TextPart,
    ToolPart,
    ReasoningPart,
    FilePart,
    StepStartPart,
    StepFinishPart,
    SnapshotPart,
    PatchPart,
    AgentPart,
    SubtaskPart,
    RetryPart,
    CompactionPart,
    UnknownPart,
]

PART_TYPES: dict[str, type[_PartBase]] = {
    cls.kind.value: cls
    for cls in (
        TextPart,
        ToolPart,
        ReasoningPart,
        FilePart,
        StepStartPart,
        StepFinishPart,
        SnapshotPart,
        PatchPart,
        AgentPart,
        SubtaskPart,
        RetryPart,
        CompactionPart,
    )
}


def decode_part(data: bytes | str) -> Part:
    return decode_part_dict(load_object(data, "part"))


def decode_part_dict(obj: Any, what: str = "part") -> Part:
    obj = require_object(obj, what)
    discriminant = require_str(obj, "type", what)
    identity = {
        "id": require_str(obj, "id", what),
        "session_id": opt_str(obj, "sessionID", what),
        "message_id": opt_str(obj, "messageID", what),
    }
    cls = PART_TYPES.get(discriminant)
    if cls is None:
        return UnknownPart(raw_type=discriminant, **identity)
    time = opt_object(obj, "time", what)
    return cls(  # type: ignore[return-value]
        time=PartTime.from_dict(time, f"{what}.time") if time is not None else None,
        **identity,
        **cls._fields_from(obj, what),
    )


def part_to_dict(part: Part) -> dict[str, Any]:
    out: dict[str, Any] = {
        "type": part.raw_type if isinstance(part, UnknownPart) else part.kind.value,
        "id": part.id,
        "sessionID": part.session_id,
        "messageID": part.message_id,
    }
    if not isinstance(part, UnknownPart):
        out["time"] = part.time.to_dict() if part.time is not None else None
        out.update(part._fields_to())
    return compact(out)


def encode_part(part: Part) -> bytes:
    return json.dumps(part_to_dict(part), ensure_ascii=False, separators=(",", ":")).encode("utf-8")
