"""Typed server events.

Every record on the event stream is an envelope ``{"type", "properties"}``.
``decode_event`` maps the event name to one of the dataclasses below; names
this client does not know become ``UnknownEvent`` and carry the raw bytes
for diagnostics.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Union

from opencode_state.dynamic_value import DynamicValue, decode_map
from opencode_state.models import ErrorInfo, Message, Session, SessionStatus
from opencode_state.parts import Part, decode_part_dict
from opencode_state.wire import (
    load_object,
    opt_int,
    opt_object,
    opt_str,
    require_object,
    require_str,
)


class EventType(str, Enum):
    SERVER_CONNECTED = "server.connected"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    MESSAGE_CREATED = "message.created"
    MESSAGE_UPDATED = "message.updated"
    MESSAGE_PART_UPDATED = "message.part.updated"
    MESSAGE_PART_REMOVED = "message.part.removed"
    SESSION_STATUS = "session.status"
    SESSION_IDLE = "session.idle"
    SESSION_ERROR = "session.error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ServerConnected:
    type: ClassVar[EventType] = EventType.SERVER_CONNECTED

    properties: dict[str, DynamicValue] = field(default_factory=dict)

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class SessionCreated:
    type: ClassVar[EventType] = EventType.SESSION_CREATED

    session: Session


@dataclass(frozen=True)
class SessionUpdated:
    type: ClassVar[EventType] = EventType.SESSION_UPDATED

    session: Session


@dataclass(frozen=True)
class MessageCreated:
    type: ClassVar[EventType] = EventType.MESSAGE_CREATED

    message: Message


@dataclass(frozen=True)
class MessageUpdated:
    type: ClassVar[EventType] = EventType.MESSAGE_UPDATED

    message: Message


@dataclass(frozen=True)
class MessagePartUpdated:
    """Part snapshot, optionally with the text fragment that produced it.

    When ``delta`` is set, ``part.text`` is the server's latest value and
    may already include the fragment; stores append ``delta`` instead.
    """

    type: ClassVar[EventType] = EventType.MESSAGE_PART_UPDATED

    part: Part
    delta: str | None = None
    seq: int | None = None


@dataclass(frozen=True)
class MessagePartRemoved:
    type: ClassVar[EventType] = EventType.MESSAGE_PART_REMOVED

    part_id: str
    session_id: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class SessionStatusChanged:
    type: ClassVar[EventType] = EventType.SESSION_STATUS

    session_id: str
    status: SessionStatus


@dataclass(frozen=True)
class SessionIdle:
    type: ClassVar[EventType] = EventType.SESSION_IDLE

    session_id: str


@dataclass(frozen=True)
class SessionErrored:
    type: ClassVar[EventType] = EventType.SESSION_ERROR

    session_id: str | None = None
    error: ErrorInfo | None = None


@dataclass(frozen=True)
class UnknownEvent:
    type: ClassVar[EventType] = EventType.UNKNOWN

    name: str
    raw: bytes = b""


Event = Union[
    ServerConnected,
    SessionCreated,
    SessionUpdated,
    MessageCreated,
    MessageUpdated,
    MessagePartUpdated,
    MessagePartRemoved,
    SessionStatusChanged,
    SessionIdle,
    SessionErrored,
    UnknownEvent,
]


def _properties(envelope: dict[str, Any], name: str) -> dict[str, Any]:
    return require_object(envelope.get("properties"), f"{name}.properties")


def _server_connected(envelope: dict[str, Any], name: str) -> Event:
    props = opt_object(envelope, "properties", name)
    return ServerConnected(properties=decode_map(props) if props is not None else {})


def _session_created(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    return SessionCreated(session=Session.from_dict(props.get("info"), f"{name}.properties.info"))


def _session_updated(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    return SessionUpdated(session=Session.from_dict(props.get("info"), f"{name}.properties.info"))


def _message_created(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    return MessageCreated(message=Message.from_dict(props.get("info"), f"{name}.properties.info"))


def _message_updated(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    return MessageUpdated(message=Message.from_dict(props.get("info"), f"{name}.properties.info"))


def _message_part_updated(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    what = f"{name}.properties"
    return MessagePartUpdated(
        part=decode_part_dict(props.get("part"), f"{what}.part"),
        delta=opt_str(props, "delta", what),
        seq=opt_int(props, "seq", what),
    )


def _message_part_removed(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    what = f"{name}.properties"
    return MessagePartRemoved(
        part_id=require_str(props, "partID", what),
        session_id=opt_str(props, "sessionID", what),
        message_id=opt_str(props, "messageID", what),
    )


def _session_status(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    what = f"{name}.properties"
    return SessionStatusChanged(
        session_id=require_str(props, "sessionID", what),
        status=SessionStatus.from_dict(props.get("status"), f"{what}.status"),
    )


def _session_idle(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    return SessionIdle(session_id=require_str(props, "sessionID", f"{name}.properties"))


def _session_error(envelope: dict[str, Any], name: str) -> Event:
    props = _properties(envelope, name)
    what = f"{name}.properties"
    error = props.get("error")
    return SessionErrored(
        session_id=opt_str(props, "sessionID", what),
        error=ErrorInfo.from_dict(error, f"{what}.error") if error is not None else None,
    )


_DECODERS: dict[str, Callable[[dict[str, Any], str], Event]] = {
    EventType.SERVER_CONNECTED.value: _server_connected,
    EventType.SESSION_CREATED.value: _session_created,
    EventType.SESSION_UPDATED.value: _session_updated,
    EventType.MESSAGE_CREATED.value: _message_created,
    EventType.MESSAGE_UPDATED.value: _message_updated,
    EventType.MESSAGE_PART_UPDATED.value: _message_part_updated,
    EventType.MESSAGE_PART_REMOVED.value: _message_part_removed,
    EventType.SESSION_STATUS.value: _session_status,
    EventType.SESSION_IDLE.value: _session_idle,
    EventType.SESSION_ERROR.value: _session_error,
}


def decode_event(name: str, payload: bytes | str) -> Event:
    """Decode one stream record. Raises ``StructuralDecodeError`` for malformed known events."""
    decoder = _DECODERS.get(name)
    if decoder is None:
        raw = payload.encode("utf-8") if isinstance(payload, str) else payload
        return UnknownEvent(name=name, raw=raw)
    return decoder(load_object(payload, name), name)


def decode_envelope(payload: bytes | str) -> Event:
    """Decode a record whose event name is only available as the envelope's ``type``."""
    envelope = load_object(payload, "event")
    name = require_str(envelope, "type", "event")
    decoder = _DECODERS.get(name)
    if decoder is None:
        raw = payload.encode("utf-8") if isinstance(payload, str) else payload
        return UnknownEvent(name=name, raw=raw)
    return decoder(envelope, name)
