"""In-memory session/message/part state rebuilt from the server event stream.

The store keeps three id-keyed tables plus ordered id lists (messages per
session, parts per message). Records are frozen dataclasses; every change
swaps in a new record, so a reader holding a record never sees it mutate.

Merge rules:

* session and message events replace the stored record wholesale;
* ``message.part.updated`` without a delta replaces the part, with a delta
  it appends the fragment to the locally stored text;
* tool status only moves forward (pending, running, then completed or error);
* records whose owner has not arrived yet wait in a bounded pending buffer.
"""

from __future__ import annotations

import itertools
import threading
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Mapping

from loguru import logger

from opencode_state.api_models import MessageWithParts
from opencode_state.delta_dedup import DeltaDedup, NoDeltaDedup
from opencode_state.errors import InvalidTransition
from opencode_state.events import (
    Event,
    MessageCreated,
    MessagePartRemoved,
    MessagePartUpdated,
    MessageUpdated,
    ServerConnected,
    SessionCreated,
    SessionErrored,
    SessionIdle,
    SessionStatusChanged,
    SessionUpdated,
    UnknownEvent,
)
from opencode_state.models import ErrorInfo, Message, Session, SessionStatus, SessionStatusType
from opencode_state.parts import Part, ReasoningPart, TextPart, ToolPart, check_tool_transition

DEFAULT_PENDING_LIMIT = 256

_SESSION = "session"
_MESSAGE = "message"


def check_status_transition(session_id: str, current: SessionStatus, proposed: SessionStatus) -> None:
    """A retry status may not report a lower attempt than the one already stored."""
    if current.type != SessionStatusType.RETRY or proposed.type != SessionStatusType.RETRY:
        return
    if (proposed.attempt or 0) < (current.attempt or 0):
        raise InvalidTransition(
            f"session {session_id}",
            f"retry#{current.attempt}",
            f"retry#{proposed.attempt}",
        )


@dataclass(frozen=True)
class StoreSnapshot:
    sessions: Mapping[str, Session]
    messages: Mapping[str, Message]
    parts: Mapping[str, Part]
    session_messages: Mapping[str, tuple[str, ...]]
    message_parts: Mapping[str, tuple[str, ...]]
    statuses: Mapping[str, SessionStatus]
    errors: Mapping[str | None, ErrorInfo]
    connected: bool


class _PendingBuffer:
    """Records waiting for an owner, capped across all owners; oldest evicted first."""

    def __init__(self, limit: int):
        self._limit = max(1, limit)
        self._entries: OrderedDict[int, tuple[tuple[str, str], str, Any]] = OrderedDict()
        self._counter = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, owner: tuple[str, str], item_id: str, item: Any) -> list[tuple[tuple[str, str], str]]:
        self._entries[next(self._counter)] = (owner, item_id, item)
        evicted: list[tuple[tuple[str, str], str]] = []
        while len(self._entries) > self._limit:
            _, (old_owner, old_id, _) = self._entries.popitem(last=False)
            evicted.append((old_owner, old_id))
        return evicted

    def pop_owner(self, owner: tuple[str, str]) -> list[Any]:
        keys = [key for key, (entry_owner, _, _) in self._entries.items() if entry_owner == owner]
        return [self._entries.pop(key)[2] for key in keys]

    def discard(self, owner_kind: str, item_id: str) -> int:
        keys = [
            key
            for key, (entry_owner, entry_id, _) in self._entries.items()
            if entry_owner[0] == owner_kind and entry_id == item_id
        ]
        for key in keys:
            del self._entries[key]
        return len(keys)


class SessionStore:
    def __init__(
        self,
        *,
        delta_dedup: DeltaDedup | None = None,
        pending_limit: int = DEFAULT_PENDING_LIMIT,
    ):
        self._lock = threading.RLock()
        self._dedup: DeltaDedup = delta_dedup or NoDeltaDedup()
        self._pending = _PendingBuffer(pending_limit)
        self._sessions: dict[str, Session] = {}
        self._messages: dict[str, Message] = {}
        self._parts: dict[str, Part] = {}
        self._session_messages: dict[str, list[str]] = {}
        self._message_parts: dict[str, list[str]] = {}
        self._statuses: dict[str, SessionStatus] = {}
        self._errors: dict[str | None, ErrorInfo] = {}
        self._connected = False

    # -- writes --

    def apply(self, event: Event) -> bool:
        """Apply one decoded event. Returns True when stored state changed.

        Rejected transitions and orphaned records are logged, never raised.
        """
        with self._lock:
            if isinstance(event, (SessionCreated, SessionUpdated)):
                return self._upsert_session(event.session)
            if isinstance(event, (MessageCreated, MessageUpdated)):
                return self._upsert_message(event.message)
            if isinstance(event, MessagePartUpdated):
                return self._update_part(event)
            if isinstance(event, MessagePartRemoved):
                return self._remove_part(event.part_id)
            if isinstance(event, SessionStatusChanged):
                return self._set_status(event.session_id, event.status)
            if isinstance(event, SessionIdle):
                return self._set_status(event.session_id, SessionStatus.idle())
            if isinstance(event, SessionErrored):
                return self._record_error(event)
            if isinstance(event, ServerConnected):
                changed = not self._connected
                self._connected = True
                logger.info("Event stream connected")
                return changed
            if isinstance(event, UnknownEvent):
                logger.debug(f"Ignoring unknown event {event.name!r} ({len(event.raw)} bytes)")
                return False
            logger.warning(f"Unhandled event type: {type(event).__name__}")
            return False

    def upsert_session(self, session: Session) -> bool:
        """Record a session obtained outside the stream, e.g. from a create call."""
        with self._lock:
            return self._upsert_session(session)

    def load_messages(self, items: Iterable[MessageWithParts], *, session_id: str | None = None) -> None:
        """Bring messages and parts in line with a freshly fetched transcript.

        Stored parts missing from a fetched message are removed. When
        ``session_id`` is given the items are that session's full transcript,
        and stored messages absent from it are removed with their parts.
        """
        items = list(items)
        with self._lock:
            if session_id is not None:
                fetched = {item.info.id for item in items}
                for message_id in list(self._session_messages.get(session_id, [])):
                    if message_id not in fetched:
                        self._remove_message(message_id)
            for item in items:
                self._upsert_message(item.info)
                fetched_parts = {part.id for part in item.parts}
                for part_id in list(self._message_parts.get(item.info.id, [])):
                    if part_id not in fetched_parts:
                        self._remove_part(part_id)
                for part in item.parts:
                    self._update_part(MessagePartUpdated(part=part))

    def mark_disconnected(self) -> None:
        with self._lock:
            self._connected = False

    def _upsert_session(self, session: Session) -> bool:
        current = self._sessions.get(session.id)
        if current == session:
            return False
        if (
            current is not None
            and current.time is not None
            and session.time is not None
            and session.time.updated < current.time.updated
        ):
            logger.warning(
                f"Ignoring stale snapshot of session {session.id} "
                f"(updated {session.time.updated} < {current.time.updated})"
            )
            return False
        self._sessions[session.id] = session
        self._session_messages.setdefault(session.id, [])
        for message in self._pending.pop_owner((_SESSION, session.id)):
            self._upsert_message(message)
        return True

    def _upsert_message(self, message: Message) -> bool:
        if message.session_id not in self._sessions:
            self._buffer((_SESSION, message.session_id), message.id, message)
            return False

        current = self._messages.get(message.id)
        changed = current != message
        if current is not None and current.session_id != message.session_id:
            self._detach(self._session_messages, current.session_id, message.id)
        self._messages[message.id] = message
        order = self._session_messages.setdefault(message.session_id, [])
        if message.id not in order:
            order.append(message.id)
        self._message_parts.setdefault(message.id, [])

        for pending in self._pending.pop_owner((_MESSAGE, message.id)):
            changed = self._update_part(pending) or changed
        return changed

    def _update_part(self, event: MessagePartUpdated) -> bool:
        incoming = event.part
        current = self._parts.get(incoming.id)
        message_id = incoming.message_id or (current.message_id if current is not None else None)
        if message_id is None:
            logger.warning(f"Dropping part {incoming.id}: no owning message id")
            return False
        if message_id not in self._messages:
            self._buffer((_MESSAGE, message_id), incoming.id, event)
            return False
        owner = self._messages[message_id]
        if incoming.session_id is not None and incoming.session_id != owner.session_id:
            logger.warning(
                f"Dropping part {incoming.id}: session {incoming.session_id} does not own message {message_id}"
            )
            return False
        if incoming.message_id is None:
            incoming = replace(incoming, message_id=message_id)

        if event.delta is not None:
            merged = self._merge_delta(event, incoming, current)
            if merged is None:
                return False
            incoming = merged

        if isinstance(current, ToolPart) and isinstance(incoming, ToolPart):
            if current.state is not None and incoming.state is not None:
                try:
                    check_tool_transition(f"tool part {incoming.id}", current.state.status, incoming.state.status)
                except InvalidTransition as ex:
                    logger.warning(str(ex))
                    return False

        if current == incoming:
            return False
        if current is not None and current.message_id is not None and current.message_id != message_id:
            self._detach(self._message_parts, current.message_id, incoming.id)
        self._parts[incoming.id] = incoming
        order = self._message_parts.setdefault(message_id, [])
        if incoming.id not in order:
            order.append(incoming.id)
        return True

    def _merge_delta(self, event: MessagePartUpdated, incoming: Part, current: Part | None) -> Part | None:
        if not isinstance(incoming, (TextPart, ReasoningPart)):
            logger.warning(f"Delta on {incoming.kind.value} part {incoming.id}; applying as snapshot")
            return incoming
        stored_text = current.text if isinstance(current, (TextPart, ReasoningPart)) else None
        if not self._dedup.should_apply(event, stored_text):
            logger.debug(f"Dropping duplicate delta for part {incoming.id}")
            return None
        # Payload text may already contain the delta; only the local value is extended.
        return replace(incoming, text=(stored_text or "") + (event.delta or ""))

    def _remove_part(self, part_id: str) -> bool:
        dropped = self._pending.discard(_MESSAGE, part_id)
        part = self._parts.pop(part_id, None)
        self._dedup.forget(part_id)
        if part is None:
            return dropped > 0
        if part.message_id is not None:
            self._detach(self._message_parts, part.message_id, part_id)
        return True

    def _remove_message(self, message_id: str) -> None:
        message = self._messages.pop(message_id, None)
        self._pending.pop_owner((_MESSAGE, message_id))
        for part_id in self._message_parts.pop(message_id, []):
            self._parts.pop(part_id, None)
            self._dedup.forget(part_id)
        if message is not None:
            self._detach(self._session_messages, message.session_id, message_id)

    def _set_status(self, session_id: str, status: SessionStatus) -> bool:
        current = self._statuses.get(session_id)
        if current is not None:
            try:
                check_status_transition(session_id, current, status)
            except InvalidTransition as ex:
                logger.warning(str(ex))
                return False
        if current == status:
            return False
        self._statuses[session_id] = status
        return True

    def _record_error(self, event: SessionErrored) -> bool:
        error = event.error or ErrorInfo()
        logger.warning(f"Session {event.session_id or '<global>'} error: {error.name}: {error.message}")
        if self._errors.get(event.session_id) == error:
            return False
        self._errors[event.session_id] = error
        return True

    def _buffer(self, owner: tuple[str, str], item_id: str, item: Any) -> None:
        logger.debug(f"Buffering {item_id} until {owner[0]} {owner[1]} arrives")
        for (kind, owner_id), evicted_id in self._pending.add(owner, item_id, item):
            logger.warning(f"Pending buffer full; dropped {evicted_id} waiting for {kind} {owner_id}")

    @staticmethod
    def _detach(index: dict[str, list[str]], owner_id: str, item_id: str) -> None:
        order = index.get(owner_id)
        if order is not None and item_id in order:
            order.remove(item_id)

    # -- reads --

    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def get_session(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def list_sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    def get_message(self, message_id: str) -> Message | None:
        with self._lock:
            return self._messages.get(message_id)

    def messages_for(self, session_id: str) -> list[Message]:
        with self._lock:
            return [self._messages[mid] for mid in self._session_messages.get(session_id, [])]

    def get_part(self, part_id: str) -> Part | None:
        with self._lock:
            return self._parts.get(part_id)

    def parts_for(self, message_id: str) -> list[Part]:
        with self._lock:
            return [self._parts[pid] for pid in self._message_parts.get(message_id, [])]

    def status_for(self, session_id: str) -> SessionStatus | None:
        with self._lock:
            return self._statuses.get(session_id)

    def error_for(self, session_id: str | None) -> ErrorInfo | None:
        with self._lock:
            return self._errors.get(session_id)

    def snapshot(self) -> StoreSnapshot:
        with self._lock:
            return StoreSnapshot(
                sessions=MappingProxyType(dict(self._sessions)),
                messages=MappingProxyType(dict(self._messages)),
                parts=MappingProxyType(dict(self._parts)),
                session_messages=MappingProxyType({k: tuple(v) for k, v in self._session_messages.items()}),
                message_parts=MappingProxyType({k: tuple(v) for k, v in self._message_parts.items()}),
                statuses=MappingProxyType(dict(self._statuses)),
                errors=MappingProxyType(dict(self._errors)),
                connected=self._connected,
            )
