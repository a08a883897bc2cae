"""Batch identity: ids, idempotency stamping and the stable content hash."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from batchguard.contracts.outcome import BatchMetadata
from batchguard.executor.operations_schema import Batch, Envelope

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

_DROPPED = object()


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex}"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: List[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def fnv1a_hash(text: str) -> str:
    """32-bit FNV-1a over the UTF-16 code units of `text`, as base-36."""
    data = text.encode("utf-16-le")
    h = FNV_OFFSET_BASIS
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * FNV_PRIME) & 0xFFFFFFFF
    return _to_base36(h)


def _canonical(value: Any, seen: Set[int]) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(value) if value.is_integer() else value
    if callable(value):
        return _DROPPED
    if isinstance(value, dict):
        if id(value) in seen:
            return None
        seen.add(id(value))
        out: Dict[str, Any] = {}
        for key in sorted(value, key=str):
            item = _canonical(value[key], seen)
            if item is not _DROPPED:
                out[str(key)] = item
        return out
    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            return None
        seen.add(id(value))
        items = [_canonical(item, seen) for item in value]
        return [None if item is _DROPPED else item for item in items]
    return _DROPPED


def stable_stringify(value: Any) -> str:
    """
    Canonical JSON: keys sorted at every level, array order kept, callables dropped,
    containers already visited emitted as null.
    """
    canonical = _canonical(value, set())
    if canonical is _DROPPED:
        canonical = None
    return json.dumps(canonical, separators=(",", ":"), ensure_ascii=False)


def _hash_view(envelope: Envelope) -> Dict[str, Any]:
    view: Dict[str, Any] = {"op": envelope.op.value, "params": envelope.params.to_wire()}
    if envelope.window_id is not None:
        view["windowId"] = envelope.window_id
    return view


def compute_batch_hash(batch: Iterable[Envelope]) -> str:
    """Hash only `op`, `params` and `windowId`; stamping never changes the result."""
    return fnv1a_hash(stable_stringify([_hash_view(env) for env in batch]))


def stamp(batch: Batch, fallback_trace_id: Optional[str] = None) -> Tuple[Batch, str]:
    """
    Fill missing idempotency keys, trace ids and txn ids.

    Returns the stamped copy and the batch-level trace id. Existing values are kept.
    """
    trace_id = fallback_trace_id or next((env.trace_id for env in batch if env.trace_id), None) or new_id("trace")
    txn_id = next((env.txn_id for env in batch if env.txn_id), None) or new_id("txn")
    stamped = tuple(
        env.model_copy(
            update={
                "idempotency_key": env.idempotency_key or new_id("idemp"),
                "trace_id": env.trace_id or trace_id,
                "txn_id": env.txn_id or txn_id,
            }
        )
        for env in batch
    )
    return stamped, trace_id


def build_batch_metadata(batch: Batch, batch_id: Optional[str] = None) -> BatchMetadata:
    return BatchMetadata(
        batch_id=batch_id or new_id("batch"),
        ops_hash=compute_batch_hash(batch),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


__all__ = [
    "new_id",
    "fnv1a_hash",
    "stable_stringify",
    "compute_batch_hash",
    "stamp",
    "build_batch_metadata",
]
