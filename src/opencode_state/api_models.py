"""Request and response shapes for the server's REST endpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from opencode_state.errors import StructuralDecodeError
from opencode_state.models import Message
from opencode_state.parts import Part, decode_part_dict
from opencode_state.wire import (
    compact,
    opt_bool,
    opt_int,
    opt_list,
    opt_object,
    opt_str,
    require_object,
    require_str,
)


@dataclass(frozen=True)
class HealthResponse:
    healthy: bool
    version: str

    @classmethod
    def from_dict(cls, obj: Any) -> HealthResponse:
        obj = require_object(obj, "health")
        healthy = opt_bool(obj, "healthy", "health")
        if healthy is None:
            raise StructuralDecodeError("missing required field 'healthy'", path="health")
        return cls(healthy=healthy, version=require_str(obj, "version", "health"))


class AgentMode(str, Enum):
    PRIMARY = "primary"
    SUBAGENT = "subagent"
    ALL = "all"


@dataclass(frozen=True)
class ServerAgent:
    name: str
    mode: AgentMode
    native: bool | None = None
    is_default: bool | None = None

    @property
    def id(self) -> str:
        return self.name

    @property
    def is_primary(self) -> bool:
        """Whether users can pick this agent directly."""
        return self.mode in (AgentMode.PRIMARY, AgentMode.ALL)

    @classmethod
    def from_dict(cls, obj: Any, what: str = "agent") -> ServerAgent:
        obj = require_object(obj, what)
        raw_mode = require_str(obj, "mode", what)
        try:
            mode = AgentMode(raw_mode)
        except ValueError as ex:
            raise StructuralDecodeError(f"unknown agent mode {raw_mode!r}", path=what) from ex
        return cls(
            name=require_str(obj, "name", what),
            mode=mode,
            native=opt_bool(obj, "native", what),
            is_default=opt_bool(obj, "default", what),
        )


@dataclass(frozen=True)
class PathInfo:
    cwd: str
    root: str | None = None

    @classmethod
    def from_dict(cls, obj: Any) -> PathInfo:
        obj = require_object(obj, "path")
        return cls(cwd=require_str(obj, "cwd", "path"), root=opt_str(obj, "root", "path"))


@dataclass(frozen=True)
class ServerConfig:
    model: str | None = None
    default_agent: str | None = None

    @classmethod
    def from_dict(cls, obj: Any) -> ServerConfig:
        obj = require_object(obj, "config")
        return cls(model=opt_str(obj, "model", "config"), default_agent=opt_str(obj, "defaultAgent", "config"))


@dataclass(frozen=True)
class ProviderModel:
    id: str
    name: str
    provider_id: str | None = None
    family: str | None = None
    status: str | None = None
    context_limit: int | None = None
    output_limit: int | None = None

    @classmethod
    def from_dict(cls, obj: Any, what: str) -> ProviderModel:
        obj = require_object(obj, what)
        limit = opt_object(obj, "limit", what) or {}
        return cls(
            id=require_str(obj, "id", what),
            name=require_str(obj, "name", what),
            provider_id=opt_str(obj, "providerID", what),
            family=opt_str(obj, "family", what),
            status=opt_str(obj, "status", what),
            context_limit=opt_int(limit, "context", f"{what}.limit"),
            output_limit=opt_int(limit, "output", f"{what}.limit"),
        )


@dataclass(frozen=True)
class Provider:
    id: str
    name: str
    models: dict[str, ProviderModel] = field(default_factory=dict)

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_dict(cls, obj: Any, what: str) -> Provider:
        obj = require_object(obj, what)
        models = opt_object(obj, "models", what) or {}
        return cls(
            id=require_str(obj, "id", what),
            name=require_str(obj, "name", what),
            models={key: ProviderModel.from_dict(value, f"{what}.models.{key}") for key, value in models.items()},
        )


@dataclass(frozen=True)
class ProviderList:
    all: tuple[Provider, ...]
    default: dict[str, str]
    connected: tuple[str, ...]

    __hash__ = None  # type: ignore[assignment]

    @classmethod
    def from_dict(cls, obj: Any) -> ProviderList:
        obj = require_object(obj, "providers")
        providers = opt_list(obj, "all", "providers") or []
        default = opt_object(obj, "default", "providers") or {}
        connected = opt_list(obj, "connected", "providers") or []
        return cls(
            all=tuple(Provider.from_dict(p, f"providers.all[{i}]") for i, p in enumerate(providers)),
            default={k: v for k, v in default.items() if isinstance(v, str)},
            connected=tuple(c for c in connected if isinstance(c, str)),
        )


@dataclass(frozen=True)
class ModelRef:
    provider_id: str
    model_id: str
    display_name: str = ""

    @property
    def id(self) -> str:
        return f"{self.provider_id}/{self.model_id}"

    @classmethod
    def from_provider(cls, provider: Provider, model: ProviderModel) -> ModelRef:
        return cls(provider_id=provider.id, model_id=model.id, display_name=f"{provider.name} - {model.name}")

    def to_dict(self) -> dict[str, Any]:
        return {"providerID": self.provider_id, "modelID": self.model_id}


@dataclass(frozen=True)
class CreateSessionRequest:
    title: str | None = None
    parent_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return compact({"title": self.title, "parentID": self.parent_id})


@dataclass(frozen=True)
class TextPromptPart:
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(frozen=True)
class FilePromptPart:
    url: str
    mime: str
    filename: str | None = None

    @classmethod
    def image(cls, base64_data: str, media_type: str, filename: str | None = None) -> FilePromptPart:
        """Build a file part from base64 image data using a data URL."""
        return cls(url=f"data:{media_type};base64,{base64_data}", mime=media_type, filename=filename)

    def to_dict(self) -> dict[str, Any]:
        return compact({"type": "file", "url": self.url, "mime": self.mime, "filename": self.filename})


PromptPart = Union[TextPromptPart, FilePromptPart]


@dataclass(frozen=True)
class PromptRequest:
    parts: tuple[PromptPart, ...]
    agent: str | None = None
    model: ModelRef | None = None
    no_reply: bool | None = None

    @classmethod
    def from_text(cls, text: str, agent: str | None = None) -> PromptRequest:
        return cls(parts=(TextPromptPart(text),), agent=agent)

    def to_dict(self) -> dict[str, Any]:
        return compact(
            {
                "parts": [p.to_dict() for p in self.parts],
                "agent": self.agent,
                "model": self.model.to_dict() if self.model is not None else None,
                "noReply": self.no_reply,
            }
        )


@dataclass(frozen=True)
class MessageWithParts:
    info: Message
    parts: tuple[Part, ...]

    @classmethod
    def from_dict(cls, obj: Any, what: str = "message") -> MessageWithParts:
        obj = require_object(obj, what)
        parts = opt_list(obj, "parts", what) or []
        return cls(
            info=Message.from_dict(obj.get("info"), f"{what}.info"),
            parts=tuple(decode_part_dict(p, f"{what}.parts[{i}]") for i, p in enumerate(parts)),
        )
