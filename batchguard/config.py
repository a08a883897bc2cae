"""Shared configuration helpers: host/port selection and runtime switches."""

from __future__ import annotations

import os
from typing import Tuple

# Dedicated ports for different runtimes to avoid clashes and lingering sockets.
DEV_HOST = os.getenv("BATCHGUARD_DEV_HOST", "127.0.0.1")
DEV_PORT = int(os.getenv("BATCHGUARD_DEV_PORT", "5104"))
TEST_HOST = os.getenv("BATCHGUARD_TEST_HOST", DEV_HOST)
TEST_PORT = int(os.getenv("BATCHGUARD_TEST_PORT", "5115"))

DEFAULT_DESKTOP_WIDTH = 1920
DEFAULT_DESKTOP_HEIGHT = 1080


def flag_from_env(var: str, default: bool) -> bool:
    value = os.getenv(var)
    if value is None:
        return default
    return str(value).strip().lower() not in {"0", "false", "off", "no", "none"}


def _int_from_env(var: str, default: int) -> int:
    value = os.getenv(var)
    if value is None or not value.strip():
        return default
    return int(value)


def is_test_mode() -> bool:
    """Detect pytest/BATCHGUARD_TEST_MODE runs."""
    return os.getenv("BATCHGUARD_TEST_MODE") == "1" or bool(os.getenv("PYTEST_CURRENT_TEST"))


def dom_dedupe_enabled() -> bool:
    return flag_from_env("BATCHGUARD_DOM_DEDUPE", True)


def desktop_size() -> Tuple[int, int]:
    """Desktop bounds used to clamp window geometry."""
    return (
        _int_from_env("BATCHGUARD_DESKTOP_WIDTH", DEFAULT_DESKTOP_WIDTH),
        _int_from_env("BATCHGUARD_DESKTOP_HEIGHT", DEFAULT_DESKTOP_HEIGHT),
    )


def log_dir_override() -> str | None:
    return os.getenv("BATCHGUARD_LOG_DIR") or None


def resolve_host_port(host: str | None = None, port: int | None = None) -> Tuple[str, int]:
    """Return the host/port tuple for the current mode, honoring overrides."""
    if host and port:
        return host, int(port)

    if is_test_mode():
        resolved_host = host or TEST_HOST
        resolved_port = int(port or TEST_PORT)
    else:
        resolved_host = host or DEV_HOST
        resolved_port = int(port or DEV_PORT)

    return resolved_host, resolved_port
