"""Strategies for dropping re-delivered text deltas.

The event stream carries no delivery guarantee for ``message.part.updated``
deltas, and applying one twice doubles the fragment. Which strategy is safe
depends on the transport, so it is chosen by config.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from opencode_state.events import MessagePartUpdated


@runtime_checkable
class DeltaDedup(Protocol):
    def should_apply(self, event: MessagePartUpdated, stored_text: str | None) -> bool:
        """Return False when ``event.delta`` has already been applied."""
        ...

    def forget(self, part_id: str) -> None: ...


class NoDeltaDedup:
    """Trust the transport to deliver each delta at most once."""

    def should_apply(self, event: MessagePartUpdated, stored_text: str | None) -> bool:
        return True

    def forget(self, part_id: str) -> None:
        pass


class SequenceDeltaDedup:
    """Drop deltas whose ``seq`` is not above the last one applied to the same part.

    Events without a ``seq`` are always applied.
    """

    def __init__(self) -> None:
        self._last_seq: dict[str, int] = {}

    def should_apply(self, event: MessagePartUpdated, stored_text: str | None) -> bool:
        if event.seq is None:
            return True
        last = self._last_seq.get(event.part.id)
        if last is not None and event.seq <= last:
            return False
        self._last_seq[event.part.id] = event.seq
        return True

    def forget(self, part_id: str) -> None:
        self._last_seq.pop(part_id, None)


class SnapshotDeltaDedup:
    """Drop a delta when the payload's latest text already equals what is stored.

    The payload text includes the fragment, so a match means the fragment is
    already part of the stored text.
    """

    def should_apply(self, event: MessagePartUpdated, stored_text: str | None) -> bool:
        if stored_text is None or event.delta is None:
            return True
        payload_text = getattr(event.part, "text", None)
        return not (payload_text == stored_text and stored_text.endswith(event.delta))

    def forget(self, part_id: str) -> None:
        pass


_STRATEGIES: dict[str, type] = {
    "none": NoDeltaDedup,
    "sequence": SequenceDeltaDedup,
    "snapshot": SnapshotDeltaDedup,
}


def create_delta_dedup(name: str) -> DeltaDedup:
    """Factory: create a de-duplication strategy by name."""
    cls = _STRATEGIES.get(name.strip().lower())
    if cls is None:
        raise ValueError(f"Unknown delta dedup strategy: {name!r}. Supported: {', '.join(sorted(_STRATEGIES))}")
    return cls()
