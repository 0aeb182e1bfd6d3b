import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_PACKAGE = "opencode_state"

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> <level>{level:<8}</level> "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> {message}"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    """stderr sink. ``package_only`` hides records from other libraries (httpx, tenacity)."""

    def __init__(self, package_only: bool = False):
        self._package_only = package_only

    def register(self, level: str) -> None:
        logger.add(
            sys.stderr,
            level=level,
            format=_CONSOLE_FORMAT,
            filter=_PACKAGE if self._package_only else None,
        )

    def describe(self, level: str) -> str:
        return f"console (stderr, {level}{', package only' if self._package_only else ''})"


class FileLogConsumer:
    """Rotating file sink; ``serialize`` writes one JSON object per record."""

    def __init__(
        self,
        path: str = "opencode-state.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = Path(path)
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self._path),
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {'json' if self._serialize else 'text'}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}


def _check_level(level: str) -> str:
    level = level.upper()
    try:
        logger.level(level)
    except ValueError as ex:
        raise ValueError(f"Unknown log level: {level!r}") from ex
    return level


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace all loguru sinks with the configured consumers.

    Each consumer entry is ``{"type": ..., "level"?: ..., "enabled"?: ...}``
    plus constructor options. Returns a description per registered sink.
    """
    level = _check_level(level)
    logger.remove()

    registered: list[str] = []
    skipped: list[str] = []
    for entry in consumers if consumers is not None else [{"type": "console"}]:
        options = dict(entry)
        sink_type = options.pop("type", "")
        sink_level = _check_level(options.pop("level", level))
        if not options.pop("enabled", True):
            continue
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            skipped.append(str(sink_type))
            continue
        consumer = cls(**options)
        consumer.register(sink_level)
        registered.append(consumer.describe(sink_level))

    for sink_type in skipped:
        logger.warning(f"Unknown log consumer type: {sink_type!r}")
    return registered
