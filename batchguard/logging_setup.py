from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

from batchguard.config import flag_from_env, log_dir_override

ROOT = Path(__file__).resolve().parent.parent
DEFAULT_LOG_DIR = ROOT / "logs"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def resolve_log_dir() -> Path:
    override = log_dir_override()
    return Path(override) if override else DEFAULT_LOG_DIR


def _safe_mkdir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    return True


class _TeeStream:
    """Mirror writes to the wrapped stream and to a logger, one record per line."""

    def __init__(self, stream: object, logger: logging.Logger, level: int) -> None:
        self._stream = stream
        self._logger = logger
        self._level = level
        self._buffer = ""

    def write(self, message: object) -> int:
        if message is None:
            return 0
        text = message.decode(errors="replace") if isinstance(message, bytes) else str(message)
        if text:
            self._buffer += text
            while "\n" in self._buffer:
                line, self._buffer = self._buffer.split("\n", 1)
                line = line.rstrip("\r")
                if line.strip():
                    self._logger.log(self._level, line)
        if hasattr(self._stream, "write"):
            return int(self._stream.write(text))
        return len(text)

    def flush(self) -> None:
        if self._buffer.strip():
            self._logger.log(self._level, self._buffer.rstrip("\r"))
        self._buffer = ""
        if hasattr(self._stream, "flush"):
            self._stream.flush()

    def isatty(self) -> bool:
        return bool(getattr(self._stream, "isatty", lambda: False)())

    def __getattr__(self, name: str) -> object:
        return getattr(self._stream, name)


def _rotating_handler(path: Path) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=1_000_000,
        backupCount=2,
        encoding="utf-8",
        delay=True,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging() -> None:
    """Configure rotating file logging plus the structured event log."""
    log_dir = resolve_log_dir()
    if not _safe_mkdir(log_dir):
        # stderr-only; basicConfig defaults still apply.
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=DATE_FORMAT)
        logging.getLogger(__name__).warning("Log directory %s unavailable; logging to stderr", log_dir)
        return

    file_handler = _rotating_handler(log_dir / "batchguard.log")
    logging.basicConfig(level=logging.INFO, handlers=[file_handler])

    # Dedicated structured event logger (JSON lines).
    event_logger = logging.getLogger("batchguard.events")
    event_logger.setLevel(logging.INFO)
    event_logger.addHandler(_rotating_handler(log_dir / "batchguard_events.log"))
    event_logger.propagate = False

    # Align uvicorn loggers to use same handlers/format.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.setLevel(logging.INFO)
        logger.addHandler(file_handler)
        logger.propagate = False

    if flag_from_env("BATCHGUARD_CAPTURE_STDIO", False):
        stdout_logger = logging.getLogger("batchguard.stdout")
        stderr_logger = logging.getLogger("batchguard.stderr")
        stdout_logger.setLevel(logging.INFO)
        stderr_logger.setLevel(logging.ERROR)
        sys.stdout = _TeeStream(sys.stdout, stdout_logger, logging.INFO)
        sys.stderr = _TeeStream(sys.stderr, stderr_logger, logging.ERROR)
