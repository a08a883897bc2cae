"""Entrypoint for launching the batchguard host with a port check.

If the configured port is busy and already answers as a batchguard host, the
launcher exits cleanly; any other listener aborts with a clear message instead
of a bind error from uvicorn.
"""

from __future__ import annotations

import argparse
import socket
import sys
import urllib.error
import urllib.request

import uvicorn

from batchguard.config import DEV_HOST, DEV_PORT, is_test_mode, resolve_host_port

APP_PATH = "batchguard.app:app"


def log(message: str) -> None:
    print(f"[batchguard-launch] {message}", flush=True)


def _can_bind(host: str, port: int) -> bool:
    """Return True if the socket can be bound, False otherwise."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            return True
        except OSError:
            return False


def ensure_port_free(host: str, port: int) -> str:
    """
    Returns:
    - "free": safe to launch
    - "running": a batchguard host already answers on the port
    - "blocked": port in use by something else
    """
    if _can_bind(host, port):
        return "free"

    log(f"Port {port} on {host} is busy; probing for an existing host...")
    try:
        with urllib.request.urlopen(f"http://{host}:{port}/", timeout=1) as resp:
            if resp.status == 200 and b"batchguard" in resp.read():
                log(f"batchguard already running on http://{host}:{port}; not starting a new one.")
                return "running"
    except (urllib.error.URLError, OSError) as exc:
        log(f"Probe failed: {exc}")
    log(f"Port {port} on {host} is in use by another process. Please free it manually.")
    return "blocked"


def main(host: str | None = None, port: int | None = None, reload: bool = False) -> None:
    resolved_host, resolved_port = resolve_host_port(host=host, port=port)
    profile = "test" if is_test_mode() else "dev"

    availability = ensure_port_free(resolved_host, resolved_port)
    if availability == "running":
        sys.exit(0)
    if availability == "blocked":
        sys.exit(1)

    log(f"Starting uvicorn {APP_PATH} on http://{resolved_host}:{resolved_port} [{profile}]")
    uvicorn.run(
        APP_PATH,
        host=resolved_host,
        port=resolved_port,
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Launch the batchguard host with a port check.")
    parser.add_argument("--host", help=f"Host to bind (default dev: {DEV_HOST})")
    parser.add_argument(
        "--port",
        type=int,
        help=f"Port to bind (default dev: {DEV_PORT}, test: see BATCHGUARD_TEST_PORT)",
    )
    parser.add_argument("--reload", action="store_true", help="Enable uvicorn reload (dev only)")
    args = parser.parse_args()

    main(host=args.host, port=args.port, reload=args.reload)
