from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
from loguru import logger

from opencode_state.errors import ApiError
from opencode_state.stream import RawEvent


async def parse_sse(lines: AsyncIterator[str]) -> AsyncIterator[RawEvent]:
    """Group server-sent-event lines into records. Comment lines (heartbeats) are skipped."""
    event_name: str | None = None
    data_lines: list[str] = []
    async for line in lines:
        if line == "":
            if data_lines:
                yield RawEvent(event_name, "\n".join(data_lines).encode("utf-8"))
            event_name = None
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_name = value or None
        elif name == "data":
            data_lines.append(value)
    if data_lines:
        yield RawEvent(event_name, "\n".join(data_lines).encode("utf-8"))


class SseTransport:
    """Streams ``GET /event`` from the server. No reconnect: callers re-fetch state and restart."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        path: str = "/event",
        directory: str | None = None,
        owns_client: bool = False,
    ):
        self._client = client
        self._path = path
        self._directory = directory
        self._owns_client = owns_client

    async def events(self) -> AsyncIterator[RawEvent]:
        params = {"directory": self._directory} if self._directory else None
        logger.debug(f"Opening event stream {self._path}")
        async with self._client.stream(
            "GET",
            self._path,
            params=params,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(None),
        ) as response:
            if response.status_code >= 400:
                body = (await response.aread()).decode("utf-8", errors="replace")
                raise ApiError("GET", self._path, response.status_code, body)
            async for record in parse_sse(response.aiter_lines()):
                yield record

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
