from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

SERVER_URL_ENV_VAR = "OPENCODE_SERVER_URL"


@dataclass
class AppConfig:
    server_url: str
    directory: str | None
    log_level: str
    log_consumers: list | None
    delta_dedup: str
    pending_buffer_limit: int
    request_timeout_seconds: float
    request_retries: int


def load_json_config(config_path: Path | None = None) -> dict:
    config_path = config_path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        server_url=str(config.get("ServerUrl", "http://127.0.0.1:4096")).rstrip("/"),
        directory=str(config.get("Directory", "")).strip() or None,
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
        delta_dedup=str(config.get("DeltaDedup", "none")).strip().lower(),
        pending_buffer_limit=int(config.get("PendingBufferLimit", 256)),
        request_timeout_seconds=float(config.get("RequestTimeoutSeconds", 30.0)),
        request_retries=int(config.get("RequestRetries", 3)),
    )


def load_app_config(config_path: Path | None = None) -> AppConfig:
    """Read config.json, then let the environment (including .env) override the server URL."""
    load_dotenv()
    app = parse_app_config(load_json_config(config_path))
    server_url = os.environ.get(SERVER_URL_ENV_VAR, "").strip()
    if server_url:
        app.server_url = server_url.rstrip("/")
    return app
