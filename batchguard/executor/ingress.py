"""Single JSON ingress: a batch array or a plan object in, a stamped batch out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from batchguard.executor.identity import compute_batch_hash, stamp
from batchguard.executor.operations_schema import Batch, Plan, validate_batch, validate_plan


@dataclass(frozen=True)
class IngressResult:
    batch: Batch
    trace_id: str
    ops_hash: str
    plan: Optional[Plan] = None


def ingest(raw: Any, fallback_trace_id: Optional[str] = None) -> IngressResult:
    """
    Validate and stamp raw planner/actor output.

    Objects are treated as plans (`{summary, risks?, batch, actor_hints?}`), anything
    else as a bare batch. Raises BatchValidationError on invalid input.
    """
    plan: Optional[Plan] = None
    if isinstance(raw, dict):
        plan = validate_plan(raw)
        batch = plan.batch
    else:
        batch = validate_batch(raw)

    stamped, trace_id = stamp(batch, fallback_trace_id)
    if plan is not None:
        plan = plan.model_copy(update={"batch": stamped})
    return IngressResult(batch=stamped, trace_id=trace_id, ops_hash=compute_batch_hash(stamped), plan=plan)


__all__ = ["IngressResult", "ingest"]
