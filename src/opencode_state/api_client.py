"""Async REST client for the server's session, provider and path endpoints.

Reads are retried on connection/timeout errors with exponential backoff;
writes are sent once. Responses are decoded into the typed records from
``models`` and ``api_models``.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from opencode_state.api_models import (
    CreateSessionRequest,
    HealthResponse,
    MessageWithParts,
    PathInfo,
    PromptRequest,
    ProviderList,
    ServerAgent,
    ServerConfig,
)
from opencode_state.errors import ApiError, StructuralDecodeError
from opencode_state.models import Session
from opencode_state.session_store import SessionStore

_RETRYABLE = (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout, httpx.RemoteProtocolError)


def _on_retry(retry_state) -> None:
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.1f}s (attempt {attempt})...")


def default_retry_kwargs(attempts: int, *, multiplier: float = 0.5, max_wait: float = 8.0) -> dict:
    return {
        "retry": retry_if_exception_type(_RETRYABLE),
        "wait": wait_exponential(multiplier=multiplier, min=multiplier, max=max_wait),
        "stop": stop_after_attempt(max(1, attempts)),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def _parse_json(response: httpx.Response, what: str) -> Any:
    try:
        return json.loads(response.content)
    except (json.JSONDecodeError, UnicodeDecodeError) as ex:
        raise StructuralDecodeError(f"invalid JSON: {ex}", path=what) from ex


def _require_list(obj: Any, what: str) -> list[Any]:
    if not isinstance(obj, list):
        raise StructuralDecodeError(f"expected list, got {type(obj).__name__}", path=what)
    return obj


class OpenCodeClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        directory: str | None = None,
        retries: int = 3,
        retry_multiplier: float = 0.5,
    ):
        self._client = client
        self._directory = directory
        self._retry_kwargs = default_retry_kwargs(retries, multiplier=retry_multiplier)

    @classmethod
    def create(
        cls,
        base_url: str,
        *,
        directory: str | None = None,
        timeout: float = 30.0,
        retries: int = 3,
    ) -> OpenCodeClient:
        return cls(
            httpx.AsyncClient(base_url=base_url, timeout=timeout),
            directory=directory,
            retries=retries,
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    # -- endpoints --

    async def health(self) -> HealthResponse:
        return HealthResponse.from_dict(await self._get("/global/health"))

    async def list_agents(self) -> list[ServerAgent]:
        data = _require_list(await self._get("/agent"), "agents")
        return [ServerAgent.from_dict(item, f"agents[{i}]") for i, item in enumerate(data)]

    async def get_config(self) -> ServerConfig:
        return ServerConfig.from_dict(await self._get("/config"))

    async def set_default_agent(self, agent_name: str) -> ServerConfig:
        return ServerConfig.from_dict(await self._send("PATCH", "/config", {"defaultAgent": agent_name}))

    async def list_providers(self) -> ProviderList:
        return ProviderList.from_dict(await self._get("/config/providers"))

    async def get_path(self) -> PathInfo:
        return PathInfo.from_dict(await self._get("/path"))

    async def create_session(self, request: CreateSessionRequest | None = None) -> Session:
        body = (request or CreateSessionRequest()).to_dict()
        return Session.from_dict(await self._send("POST", "/session", body))

    async def list_sessions(self) -> list[Session]:
        data = _require_list(await self._get("/session"), "sessions")
        return [Session.from_dict(item, f"sessions[{i}]") for i, item in enumerate(data)]

    async def get_session(self, session_id: str) -> Session:
        return Session.from_dict(await self._get(f"/session/{session_id}"))

    async def list_messages(self, session_id: str) -> list[MessageWithParts]:
        data = _require_list(await self._get(f"/session/{session_id}/message"), "messages")
        return [MessageWithParts.from_dict(item, f"messages[{i}]") for i, item in enumerate(data)]

    async def send_prompt(self, session_id: str, request: PromptRequest) -> MessageWithParts:
        data = await self._send("POST", f"/session/{session_id}/message", request.to_dict())
        return MessageWithParts.from_dict(data)

    # -- transport --

    def _params(self) -> dict[str, str] | None:
        return {"directory": self._directory} if self._directory else None

    async def _get(self, path: str) -> Any:
        async for attempt in AsyncRetrying(**self._retry_kwargs):
            with attempt:
                response = await self._client.get(path, params=self._params())
        return self._decode(response, "GET", path)

    async def _send(self, method: str, path: str, body: dict[str, Any]) -> Any:
        response = await self._client.request(method, path, params=self._params(), json=body)
        return self._decode(response, method, path)

    @staticmethod
    def _decode(response: httpx.Response, method: str, path: str) -> Any:
        logger.debug(f"{method} {path} -> {response.status_code}")
        if response.status_code >= 400:
            raise ApiError(method, path, response.status_code, response.text)
        return _parse_json(response, path)


async def resync_session(client: OpenCodeClient, store: SessionStore, session_id: str) -> None:
    """Reload one session and its transcript into the store after a stream interruption."""
    session = await client.get_session(session_id)
    store.upsert_session(session)
    store.load_messages(await client.list_messages(session_id), session_id=session_id)
    logger.info(f"Resynced session {session_id}")
