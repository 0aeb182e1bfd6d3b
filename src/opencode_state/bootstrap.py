from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger

from opencode_state.api_client import OpenCodeClient
from opencode_state.app_config import AppConfig
from opencode_state.delta_dedup import create_delta_dedup
from opencode_state.events import Event
from opencode_state.logging_config import setup_logging
from opencode_state.session_store import SessionStore
from opencode_state.sse_transport import SseTransport
from opencode_state.stream import EventStreamConsumer


@dataclass
class AppRuntime:
    store: SessionStore
    client: OpenCodeClient
    transport: SseTransport
    consumer: EventStreamConsumer
    log_descriptions: list[str]


async def bootstrap_runtime(
    app: AppConfig,
    *,
    on_applied: Callable[[Event, bool], None] | None = None,
    start_stream: bool = True,
) -> AppRuntime:
    """Build one store and wire the REST client and event stream to it."""
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    store = SessionStore(
        delta_dedup=create_delta_dedup(app.delta_dedup),
        pending_limit=app.pending_buffer_limit,
    )
    client = OpenCodeClient.create(
        app.server_url,
        directory=app.directory,
        timeout=app.request_timeout_seconds,
        retries=app.request_retries,
    )
    # The stream shares the REST connection pool; closing the client closes both.
    transport = SseTransport(client.http, directory=app.directory)
    consumer = EventStreamConsumer(store, transport, on_applied=on_applied)

    if start_stream:
        await consumer.start()
        logger.info(f"Streaming events from {app.server_url} (dedup={app.delta_dedup})")

    return AppRuntime(
        store=store,
        client=client,
        transport=transport,
        consumer=consumer,
        log_descriptions=log_descriptions,
    )


async def shutdown_runtime(runtime: AppRuntime) -> None:
    try:
        await runtime.consumer.stop()
    finally:
        await runtime.client.aclose()
