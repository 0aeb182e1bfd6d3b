from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger

from opencode_state.errors import StructuralDecodeError
from opencode_state.events import Event, decode_envelope, decode_event
from opencode_state.session_store import SessionStore


@dataclass(frozen=True)
class RawEvent:
    """One stream record. ``name`` is None when the transport has no event field."""

    name: str | None
    data: bytes


@runtime_checkable
class EventTransport(Protocol):
    def events(self) -> AsyncIterator[RawEvent]: ...

    async def aclose(self) -> None: ...


def decode_raw_event(raw: RawEvent) -> Event:
    if raw.name:
        return decode_event(raw.name, raw.data)
    return decode_envelope(raw.data)


class EventStreamConsumer:
    """Single writer: reads the transport and applies each event to the store in arrival order."""

    def __init__(
        self,
        store: SessionStore,
        transport: EventTransport,
        *,
        on_applied: Callable[[Event, bool], None] | None = None,
    ):
        self._store = store
        self._transport = transport
        self._on_applied = on_applied
        self._task: asyncio.Task | None = None
        self.applied_count = 0
        self.dropped_count = 0

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def stop(self) -> None:
        """Cancel the reader and close the transport. Applied state is kept as is."""
        task, self._task = self._task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Event stream reader had already failed")
        finally:
            await self._transport.aclose()
            self._store.mark_disconnected()

    async def run(self) -> None:
        try:
            async for raw in self._transport.events():
                self.handle(raw)
        finally:
            self._store.mark_disconnected()
        logger.info(
            f"Event stream ended (applied={self.applied_count}, dropped={self.dropped_count})"
        )

    def handle(self, raw: RawEvent) -> bool:
        try:
            event = decode_raw_event(raw)
        except StructuralDecodeError as ex:
            self.dropped_count += 1
            logger.warning(f"Dropping malformed {raw.name or 'event'} record: {ex}")
            return False

        changed = self._store.apply(event)
        self.applied_count += 1
        if self._on_applied is not None:
            try:
                self._on_applied(event, changed)
            except Exception:
                logger.exception(f"on_applied callback failed for {type(event).__name__}")
        return changed
