from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Iterable, List, Sequence

# Structured event logger configured in logging_setup.
event_logger = logging.getLogger("batchguard.events")

HTML_KEYS = frozenset({"html", "inner_html", "outer_html"})


def generate_request_id() -> str:
    """Return a short, collision-resistant request id."""
    return uuid.uuid4().hex


def _truncate(value: str, max_len: int = 2000) -> str:
    if len(value) <= max_len:
        return value
    return f"{value[:max_len]}...<truncated {len(value) - max_len} chars>"


def _sanitize_obj(obj: Any, max_len: int = 2000, keep_full: Iterable[str] | None = None) -> Any:
    keep_full = set(keep_full or [])
    if isinstance(obj, dict):
        sanitized: Dict[str, Any] = {}
        for key, val in obj.items():
            if key in HTML_KEYS and isinstance(val, str):
                sanitized[key] = f"<redacted:html {len(val)} chars>"
                continue
            if key in keep_full:
                sanitized[key] = val
                continue
            sanitized[key] = _sanitize_obj(val, max_len=max_len, keep_full=keep_full)
        return sanitized
    if isinstance(obj, (list, tuple)):
        return [_sanitize_obj(item, max_len=max_len, keep_full=keep_full) for item in obj[:50]]
    if isinstance(obj, str):
        return _truncate(obj, max_len=max_len)
    return obj


def sanitize_payload(payload: Dict[str, Any], keep_full: Iterable[str] | None = None) -> Dict[str, Any]:
    """Return a sanitized shallow copy safe for logging."""
    try:
        return dict(_sanitize_obj(payload, keep_full=keep_full or []))
    except (TypeError, ValueError, RecursionError):
        return {"error": "failed_to_sanitize"}


def summarize_batch(batch: Sequence[Any] | None) -> Dict[str, Any]:
    """Compact view of a validated batch: op names and param keys, never HTML bodies."""
    if not batch:
        return {"present": False}
    ops: List[Dict[str, Any]] = []
    for env in list(batch)[:15]:
        params = env.params.to_wire()
        ops.append({"op": env.op.value, "window_id": env.window_id, "params_keys": sorted(params.keys())})
    return {"present": True, "total_ops": len(batch), "ops_preview": ops}


def summarize_outcome(outcome: Any) -> Dict[str, Any]:
    if outcome is None:
        return {"present": False}
    errors = list(outcome.errors)
    last_error = errors[-1].model_dump() if errors else None
    return {
        "present": True,
        "success": outcome.success,
        "applied": outcome.applied,
        "skipped_duplicates": outcome.skipped_duplicates,
        "denied_by_policy": outcome.denied_by_policy,
        "deferred": outcome.deferred,
        "errors": len(errors),
        "last_error": _sanitize_obj(last_error, max_len=500) if last_error else None,
        "ops_hash": outcome.ops_hash,
    }


def log_event(event: str, request_id: str, payload: Dict[str, Any] | None = None) -> None:
    """Log a structured event as JSON; never raise."""
    body = {"event": event, "request_id": request_id}
    if payload:
        body.update(sanitize_payload(payload))
    try:
        event_logger.info(json.dumps(body, ensure_ascii=True, default=str))
    except (TypeError, ValueError):
        # Fallback to best-effort string logging.
        event_logger.info(f"{event} {request_id} {body}")
