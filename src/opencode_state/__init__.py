from opencode_state.dynamic_value import DynamicValue, ValueKind
from opencode_state.errors import ApiError, InvalidTransition, OpenCodeStateError, StructuralDecodeError
from opencode_state.events import Event, EventType, decode_envelope, decode_event
from opencode_state.parts import Part, PartKind, ToolStatus, decode_part, encode_part
from opencode_state.session_store import SessionStore
from opencode_state.stream import EventStreamConsumer, RawEvent

__all__ = [
    "ApiError",
    "DynamicValue",
    "Event",
    "EventStreamConsumer",
    "EventType",
    "InvalidTransition",
    "OpenCodeStateError",
    "Part",
    "PartKind",
    "RawEvent",
    "SessionStore",
    "StructuralDecodeError",
    "ToolStatus",
    "ValueKind",
    "decode_envelope",
    "decode_event",
    "decode_part",
    "encode_part",
]
