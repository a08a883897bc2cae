from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from batchguard.contracts.outcome import ApplyOutcome, ErrorReport
from batchguard.executor.dispatch import Dispatcher
from batchguard.executor.dom_applier import MODE_FOR_OP, DomApplier
from batchguard.executor.errors import ErrorCode, create_error_report
from batchguard.executor.gates import PermissionContext, PermissionDecision, PermissionGate, scope_for
from batchguard.executor.identity import compute_batch_hash, new_id
from batchguard.executor.operations_schema import DOM_HTML_OPS, Envelope, OperationKind
from batchguard.executor.windows import WindowManager
from batchguard.logging_utils import generate_request_id, log_event, summarize_outcome

logger = logging.getLogger(__name__)

WINDOW_METHODS: Dict[OperationKind, str] = {
    OperationKind.WINDOW_CREATE: "create",
    OperationKind.WINDOW_MOVE: "move",
    OperationKind.WINDOW_RESIZE: "resize",
    OperationKind.WINDOW_FOCUS: "focus",
    OperationKind.WINDOW_UPDATE: "update",
    OperationKind.WINDOW_CLOSE: "close",
}


class _Tally:
    def __init__(self) -> None:
        self.applied = 0
        self.skipped_duplicates = 0
        self.denied_by_policy = 0
        self.deferred = 0
        self.errors: List[ErrorReport] = []


def _apply_envelope(
    envelope: Envelope,
    tally: _Tally,
    windows: WindowManager,
    dom: DomApplier,
    dispatcher: Optional[Dispatcher],
) -> None:
    if envelope.op in WINDOW_METHODS:
        getattr(windows, WINDOW_METHODS[envelope.op])(envelope.params)
        if envelope.op is OperationKind.WINDOW_CLOSE:
            dom.forget(envelope.params.id)
        tally.applied += 1
        return

    if envelope.op in DOM_HTML_OPS:
        result = dom.apply(envelope.params, mode=MODE_FOR_OP[envelope.op])
        tally.applied += result.applied
        tally.skipped_duplicates += result.skipped_duplicates
        return

    if dispatcher is not None and dispatcher.can_dispatch(envelope.op):
        dispatcher.dispatch(envelope)
        tally.applied += 1
        return

    # Owned by an external collaborator that is not wired in.
    tally.deferred += 1


def run_batch(
    batch: Iterable[Envelope],
    *,
    windows: WindowManager,
    dom: DomApplier,
    gate: Optional[PermissionGate] = None,
    dispatcher: Optional[Dispatcher] = None,
    request_id: Optional[str] = None,
    allow_partial: bool = True,
    ops_hash: Optional[str] = None,
    batch_id: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> ApplyOutcome:
    """
    Apply a validated batch envelope by envelope.

    Each envelope goes scope -> permission gate (gated scopes only) -> window manager,
    DOM applier or dispatcher. Failures become ErrorReports; with `allow_partial=False`
    the first failure stops the batch. The outcome is also emitted as a
    `batch.applied` event.
    """
    envelopes = list(batch)
    gate = gate or PermissionGate()
    request_id = request_id or generate_request_id()
    tally = _Tally()

    for index, envelope in enumerate(envelopes):
        scope = scope_for(envelope.op)
        if gate.is_gated(scope):
            decision = gate.require(
                scope,
                PermissionContext(operation=envelope.op.value, params=envelope.params.model_dump()),
            )
            if decision is PermissionDecision.DENIED:
                tally.denied_by_policy += 1
                tally.errors.append(
                    ErrorReport(
                        op_index=index,
                        code=ErrorCode.PERMISSION_DENIED.value,
                        message=f"Permission denied for {envelope.op.value} in scope {scope}",
                    )
                )
                logger.warning("Denied %s at index %s (scope=%s)", envelope.op.value, index, scope)
                if not allow_partial:
                    break
                continue

        try:
            _apply_envelope(envelope, tally, windows, dom, dispatcher)
        except Exception as exc:  # noqa: BLE001
            report = create_error_report(index, exc)
            tally.errors.append(report)
            logger.warning("Failed %s at index %s: %s (%s)", envelope.op.value, index, report.message, report.code)
            if not allow_partial:
                break

    outcome = ApplyOutcome(
        success=not tally.errors,
        applied=tally.applied,
        skipped_duplicates=tally.skipped_duplicates,
        denied_by_policy=tally.denied_by_policy,
        deferred=tally.deferred,
        errors=tally.errors,
        batch_id=batch_id or new_id("batch"),
        ops_hash=ops_hash or compute_batch_hash(envelopes),
        trace_id=trace_id or next((env.trace_id for env in envelopes if env.trace_id), None),
    )
    log_event(
        "batch.applied",
        request_id,
        {"batch_id": outcome.batch_id, "trace_id": outcome.trace_id, "outcome": summarize_outcome(outcome)},
    )
    return outcome


__all__ = ["run_batch", "WINDOW_METHODS"]
