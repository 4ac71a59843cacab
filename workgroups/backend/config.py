"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

MIN_CODE_LENGTH = 6


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    log_level: str
    log_format: str
    code_length: int


def load_settings() -> BackendSettings:
    port_raw = os.getenv("WORKGROUPS_PORT", "8000")
    code_length_raw = os.getenv("WORKGROUPS_CODE_LENGTH", str(MIN_CODE_LENGTH))
    return BackendSettings(
        server_salt=os.getenv("WORKGROUPS_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("WORKGROUPS_DATABASE_URL"),
        host=os.getenv("WORKGROUPS_HOST", "127.0.0.1"),
        port=int(port_raw),
        log_level=os.getenv("WORKGROUPS_LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("WORKGROUPS_LOG_FORMAT", "text").lower(),
        code_length=max(MIN_CODE_LENGTH, int(code_length_raw)),
    )
