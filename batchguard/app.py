from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from batchguard.config import dom_dedupe_enabled
from batchguard.executor.dispatch import Dispatcher
from batchguard.executor.dom_applier import DomApplier
from batchguard.executor.errors import BatchValidationError
from batchguard.executor.executor import run_batch
from batchguard.executor.gates import PermissionContext, PermissionGate, scope_for
from batchguard.executor.ingress import IngressResult, ingest
from batchguard.executor.windows import WindowManager
from batchguard.llm.batch_parser import parse_batch_reply
from batchguard.logging_setup import setup_logging
from batchguard.logging_utils import generate_request_id, log_event, summarize_batch

load_dotenv()
setup_logging()


class BatchRequest(BaseModel):
    payload: Any = None
    reply: Optional[str] = None
    trace_id: Optional[str] = None


class ApplyRequest(BatchRequest):
    allow_partial: bool = True


class PermissionCheckRequest(BaseModel):
    operation: str
    params: Dict[str, Any] = Field(default_factory=dict)
    scope: Optional[str] = None


app = FastAPI()

WINDOWS = WindowManager()
DOM = DomApplier(WINDOWS, enable_deduplication=dom_dedupe_enabled())
GATE = PermissionGate()
DISPATCHER = Dispatcher()


def _respond_invalid_batch(request_id: str, exc: BatchValidationError) -> dict:
    """Build a structured invalid-batch response."""
    return {
        "error": "invalid batch",
        "request_id": request_id,
        "message": exc.message,
        "pointer": exc.pointer,
        "issues": exc.issues,
    }


def _ingest(payload: BatchRequest) -> IngressResult:
    if payload.reply is not None:
        return parse_batch_reply(payload.reply, fallback_trace_id=payload.trace_id)
    return ingest(payload.payload, fallback_trace_id=payload.trace_id)


def _ingress_body(result: IngressResult) -> dict:
    body = {
        "batch": [env.to_wire() for env in result.batch],
        "trace_id": result.trace_id,
        "ops_hash": result.ops_hash,
    }
    if result.plan is not None:
        body["summary"] = result.plan.summary
        body["risks"] = result.plan.risks
        body["actor_hints"] = result.plan.actor_hints
    return body


@app.get("/")
async def read_root():
    return {"message": "batchguard running"}


@app.post("/api/batch/validate")
async def validate_batch_endpoint(payload: BatchRequest):
    """Validate and stamp a batch or plan without applying anything."""
    request_id = generate_request_id()
    try:
        result = _ingest(payload)
    except BatchValidationError as exc:
        log_event("batch.invalid", request_id, exc.to_dict())
        return _respond_invalid_batch(request_id, exc)

    log_event(
        "batch.validated",
        request_id,
        {"trace_id": result.trace_id, "ops_hash": result.ops_hash, "batch": summarize_batch(result.batch)},
    )
    return {"status": "success", "request_id": request_id, **_ingress_body(result)}


@app.post("/api/batch/apply")
async def apply_batch_endpoint(payload: ApplyRequest):
    """Validate, stamp, gate and apply a batch against the in-process window manager."""
    request_id = generate_request_id()
    try:
        result = _ingest(payload)
    except BatchValidationError as exc:
        log_event("batch.invalid", request_id, exc.to_dict())
        return _respond_invalid_batch(request_id, exc)

    log_event("batch.apply.start", request_id, {"trace_id": result.trace_id, "batch": summarize_batch(result.batch)})
    outcome = run_batch(
        result.batch,
        windows=WINDOWS,
        dom=DOM,
        gate=GATE,
        dispatcher=DISPATCHER,
        request_id=request_id,
        allow_partial=payload.allow_partial,
        ops_hash=result.ops_hash,
        trace_id=result.trace_id,
    )
    return {
        "status": "success" if outcome.success else "error",
        "request_id": request_id,
        "outcome": outcome.model_dump(),
    }


@app.post("/api/permissions/check")
async def check_permission(payload: PermissionCheckRequest):
    scope = payload.scope or scope_for(payload.operation)
    decision = GATE.require(scope, PermissionContext(operation=payload.operation, params=payload.params))
    return {
        "operation": payload.operation,
        "scope": scope,
        "gated": GATE.is_gated(scope),
        "decision": decision.value,
    }


@app.get("/api/windows")
async def list_windows():
    return {"windows": WINDOWS.list()}


@app.get("/api/windows/{window_id}/html")
async def window_html(window_id: str, target: Optional[str] = None):
    record = WINDOWS.get_record(window_id)
    if record is None:
        raise HTTPException(status_code=404, detail="window not found")
    html = record.inner_html(target)
    if html is None:
        raise HTTPException(status_code=404, detail="target not found")
    return {"window": record.to_dict(), "target": target, "html": html}
