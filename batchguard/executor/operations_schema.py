"""
Schemas and validation helpers for UI command batches.

Supported operations and expected params (camelCase on the wire, unknown keys rejected):
- window.create: {"title": "<non-empty>", "id"?, "x"?, "y"?, "width"? >= 120, "height"? >= 120, "zIndex"?, "size"?: xs|sm|md|lg|xl}.
- window.move: {"id", "x", "y"}.
- window.resize: {"id", "width" >= 120, "height" >= 120}.
- window.focus: {"id"}.
- window.update: {"id", "title"?, "x"?, "y"?, "width"? >= 120, "height"? >= 120, "zIndex"?}.
- window.close: {"id"}.
- dom.set / dom.replace / dom.append: {"windowId", "target": "<css selector>", "html": "<= 64KB", "sanitize"?, "mode"?: set|replace|append}.
- component.render: {"windowId", "target", "type", "id"?, "props"?}.
- component.update: {"id", "props"}.
- component.destroy: {"id"}.
- state.set: {"scope": window|workspace|global, "key", "value"?, "windowId"?, "ttlMs"? > 0}.
- state.get: {"scope", "key", "windowId"?}.
- state.watch: {"scope", "key", "selector", "windowId"?, "mode"?: replace|append}.
- state.unwatch: {"scope", "key", "selector", "windowId"?}.
- api.call: {"url": http(s)/mailto/internal intent, "method"?: GET|POST|PUT|PATCH|DELETE, "headers"?, "body"?, "idempotencyKey"?, "into"?}.
- txn.cancel: {"id"?}.

Two entry shapes are accepted and normalized into one `Envelope`: the camelCase
envelope (`windowId`, `idempotencyKey`, `traceId`, `txnId`) and the snake_case plan
entry (`window_id`, `idempotency_key`, `trace_id`, `txn_id`).
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Tuple, Type, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializeAsAny,
    ValidationError,
    field_validator,
    model_validator,
)

from batchguard.executor.errors import BatchValidationError

MAX_OPS_PER_BATCH = 64
MAX_HTML_PER_OP = 64 * 1024
MAX_TOTAL_HTML_PER_BATCH = 128 * 1024
MIN_WINDOW_EXTENT = 120
MAX_ACTOR_HINTS = 20

API_CALL_URL_PREFIXES: Tuple[str, ...] = ("http://", "https://", "mailto:")
INTERNAL_INTENT_PREFIXES: Tuple[str, ...] = ("ui://intent", "ui://compute.call")


class OperationKind(str, Enum):
    WINDOW_CREATE = "window.create"
    WINDOW_MOVE = "window.move"
    WINDOW_RESIZE = "window.resize"
    WINDOW_FOCUS = "window.focus"
    WINDOW_UPDATE = "window.update"
    WINDOW_CLOSE = "window.close"
    DOM_SET = "dom.set"
    DOM_REPLACE = "dom.replace"
    DOM_APPEND = "dom.append"
    COMPONENT_RENDER = "component.render"
    COMPONENT_UPDATE = "component.update"
    COMPONENT_DESTROY = "component.destroy"
    STATE_SET = "state.set"
    STATE_GET = "state.get"
    STATE_WATCH = "state.watch"
    STATE_UNWATCH = "state.unwatch"
    API_CALL = "api.call"
    TXN_CANCEL = "txn.cancel"


DOM_HTML_OPS = frozenset({OperationKind.DOM_SET, OperationKind.DOM_REPLACE, OperationKind.DOM_APPEND})

# Blunt ingress pre-filter; the full sanitizer still runs before any DOM mutation.
DANGER_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"<script[\s>]", re.IGNORECASE),
    re.compile(r"<style[\s>]", re.IGNORECASE),
    re.compile(r"\son\w+\s*=", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"<iframe[\s>]", re.IGNORECASE),
    re.compile(r"<embed[\s>]", re.IGNORECASE),
    re.compile(r"<object[\s>]", re.IGNORECASE),
    re.compile(r"<form[\s>]", re.IGNORECASE),
)
DANGER_MESSAGE = "HTML contains disallowed content (script/style/on* or javascript:). Provide safe HTML only."

NonEmptyStr = Annotated[str, Field(min_length=1)]
StateScope = Literal["window", "workspace", "global"]
DomMode = Literal["set", "replace", "append"]
HttpMethod = Literal["GET", "POST", "PUT", "PATCH", "DELETE"]


class OperationParams(BaseModel):
    """Closed, type-strict base for every per-operation params model."""

    model_config = ConfigDict(extra="forbid", strict=True, allow_inf_nan=False, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _null_means_absent(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: val for key, val in data.items() if val is not None}
        return data

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class WindowCreateParams(OperationParams):
    id: Optional[str] = None
    title: NonEmptyStr
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = Field(default=None, ge=MIN_WINDOW_EXTENT)
    height: Optional[float] = Field(default=None, ge=MIN_WINDOW_EXTENT)
    z_index: Optional[int] = Field(default=None, alias="zIndex")
    size: Optional[Literal["xs", "sm", "md", "lg", "xl"]] = None


class WindowMoveParams(OperationParams):
    id: str
    x: float
    y: float


class WindowResizeParams(OperationParams):
    id: str
    width: float = Field(ge=MIN_WINDOW_EXTENT)
    height: float = Field(ge=MIN_WINDOW_EXTENT)


class WindowFocusParams(OperationParams):
    id: str


class WindowUpdateParams(OperationParams):
    id: str
    title: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = Field(default=None, ge=MIN_WINDOW_EXTENT)
    height: Optional[float] = Field(default=None, ge=MIN_WINDOW_EXTENT)
    z_index: Optional[int] = Field(default=None, alias="zIndex")


class WindowCloseParams(OperationParams):
    id: str


class DomParams(OperationParams):
    """Shared shape of the three HTML mutation ops."""

    window_id: NonEmptyStr = Field(alias="windowId")
    target: NonEmptyStr
    html: str
    sanitize: Optional[bool] = None
    mode: Optional[DomMode] = None

    @field_validator("html")
    @classmethod
    def _html_budget(cls, value: str) -> str:
        if len(value) > MAX_HTML_PER_OP:
            raise ValueError("html too large (max 64KB)")
        return value


class DomSetParams(DomParams):
    pass


class DomReplaceParams(DomParams):
    pass


class DomAppendParams(DomParams):
    pass


class ComponentRenderParams(OperationParams):
    id: Optional[str] = None
    window_id: NonEmptyStr = Field(alias="windowId")
    target: NonEmptyStr
    type: NonEmptyStr
    props: Any = None


class ComponentUpdateParams(OperationParams):
    id: str
    props: Any


class ComponentDestroyParams(OperationParams):
    id: str


class StateSetParams(OperationParams):
    scope: StateScope
    key: str
    value: Any = None
    window_id: Optional[NonEmptyStr] = Field(default=None, alias="windowId")
    ttl_ms: Optional[int] = Field(default=None, alias="ttlMs", gt=0)


class StateGetParams(OperationParams):
    scope: StateScope
    key: str
    window_id: Optional[NonEmptyStr] = Field(default=None, alias="windowId")


class StateWatchParams(StateGetParams):
    selector: NonEmptyStr
    mode: Literal["replace", "append"] = "replace"


class StateUnwatchParams(StateGetParams):
    selector: NonEmptyStr


class ApiCallInto(OperationParams):
    scope: StateScope
    key: str
    window_id: Optional[NonEmptyStr] = Field(default=None, alias="windowId")
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")


class ApiCallParams(OperationParams):
    method: HttpMethod = "GET"
    url: str
    headers: Optional[Dict[str, str]] = None
    body: Any = None
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    into: Optional[ApiCallInto] = None

    @field_validator("url")
    @classmethod
    def _allowed_scheme(cls, value: str) -> str:
        if value.startswith(API_CALL_URL_PREFIXES) or value.startswith(INTERNAL_INTENT_PREFIXES):
            return value
        raise ValueError("Unsupported api.call URL scheme")


class TxnCancelParams(OperationParams):
    id: Optional[str] = None


OPERATION_SCHEMAS: Dict[OperationKind, Type[OperationParams]] = {
    OperationKind.WINDOW_CREATE: WindowCreateParams,
    OperationKind.WINDOW_MOVE: WindowMoveParams,
    OperationKind.WINDOW_RESIZE: WindowResizeParams,
    OperationKind.WINDOW_FOCUS: WindowFocusParams,
    OperationKind.WINDOW_UPDATE: WindowUpdateParams,
    OperationKind.WINDOW_CLOSE: WindowCloseParams,
    OperationKind.DOM_SET: DomSetParams,
    OperationKind.DOM_REPLACE: DomReplaceParams,
    OperationKind.DOM_APPEND: DomAppendParams,
    OperationKind.COMPONENT_RENDER: ComponentRenderParams,
    OperationKind.COMPONENT_UPDATE: ComponentUpdateParams,
    OperationKind.COMPONENT_DESTROY: ComponentDestroyParams,
    OperationKind.STATE_SET: StateSetParams,
    OperationKind.STATE_GET: StateGetParams,
    OperationKind.STATE_WATCH: StateWatchParams,
    OperationKind.STATE_UNWATCH: StateUnwatchParams,
    OperationKind.API_CALL: ApiCallParams,
    OperationKind.TXN_CANCEL: TxnCancelParams,
}

_unmapped = set(OperationKind) - set(OPERATION_SCHEMAS)
if _unmapped:
    raise RuntimeError(f"operation kinds without a params schema: {sorted(k.value for k in _unmapped)}")


class Envelope(BaseModel):
    """One validated command. Immutable; identity stamping returns a copy."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    op: OperationKind
    params: SerializeAsAny[OperationParams]
    id: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    trace_id: Optional[str] = Field(default=None, alias="traceId")
    txn_id: Optional[str] = Field(default=None, alias="txnId")
    window_id: Optional[str] = Field(default=None, alias="windowId")

    @model_validator(mode="after")
    def _params_match_op(self) -> "Envelope":
        expected = OPERATION_SCHEMAS[self.op]
        if not isinstance(self.params, expected):
            raise ValueError(f"params for {self.op.value} must be {expected.__name__}")
        return self

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


Batch = Tuple[Envelope, ...]


class Plan(BaseModel):
    model_config = ConfigDict(frozen=True)

    summary: str
    batch: Tuple[Envelope, ...]
    risks: Optional[List[str]] = None
    actor_hints: Optional[List[str]] = None


class _EntryBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[Literal["command"]] = None
    op: OperationKind
    params: Any = None


class _EnvelopeEntry(_EntryBase):
    """camelCase shape produced by the raw batch API."""

    id: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    trace_id: Optional[str] = Field(default=None, alias="traceId")
    txn_id: Optional[str] = Field(default=None, alias="txnId")
    window_id: Optional[NonEmptyStr] = Field(default=None, alias="windowId")


class _PlanEntry(_EntryBase):
    """snake_case shape produced by the planner output format."""

    idempotency_key: Optional[str] = None
    trace_id: Optional[str] = None
    txn_id: Optional[str] = None
    window_id: Optional[NonEmptyStr] = None


_SNAKE_ONLY_KEYS = frozenset({"idempotency_key", "trace_id", "txn_id", "window_id"})


class _PlanShape(BaseModel):
    model_config = ConfigDict(extra="forbid", strict=True)

    summary: NonEmptyStr
    risks: Optional[Union[NonEmptyStr, List[NonEmptyStr]]] = None
    batch: List[Any]
    actor_hints: Optional[List[NonEmptyStr]] = None

    @field_validator("actor_hints")
    @classmethod
    def _concise_hints(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is not None and len(value) > MAX_ACTOR_HINTS:
            raise ValueError(f"actor_hints should stay concise (max {MAX_ACTOR_HINTS} items)")
        return value


def _escape_segment(piece: Any) -> str:
    return str(piece).replace("~", "~0").replace("/", "~1")


def join_pointer(base: str, *pieces: Any) -> str:
    """Append JSON-pointer segments to `base`."""
    return base + "".join(f"/{_escape_segment(piece)}" for piece in pieces)


def _issues_from(exc: ValidationError, base: str) -> List[Dict[str, str]]:
    return [{"pointer": join_pointer(base, *err["loc"]), "message": err["msg"]} for err in exc.errors()]


def is_dom_html_op(op: Union[OperationKind, str]) -> bool:
    try:
        return OperationKind(op) in DOM_HTML_OPS
    except ValueError:
        return False


def find_dangerous_html(html: str) -> Optional[str]:
    """Return the first danger pattern matching `html`, or None."""
    for pattern in DANGER_PATTERNS:
        if pattern.search(html):
            return pattern.pattern
    return None


def _normalize_entry(raw: Dict[str, Any]) -> _EntryBase:
    model = _PlanEntry if _SNAKE_ONLY_KEYS & set(raw.keys()) else _EnvelopeEntry
    return model.model_validate(raw)


def _validate_entry(raw: Any, entry_pointer: str) -> Tuple[Optional[Envelope], List[Dict[str, str]]]:
    if not isinstance(raw, dict):
        return None, [{"pointer": entry_pointer, "message": "entry must be an object"}]
    try:
        entry = _normalize_entry(raw)
    except ValidationError as exc:
        return None, _issues_from(exc, entry_pointer)

    params_pointer = join_pointer(entry_pointer, "params")
    raw_params = {} if entry.params is None else entry.params
    if not isinstance(raw_params, dict):
        return None, [{"pointer": params_pointer, "message": "params must be an object"}]

    schema = OPERATION_SCHEMAS[entry.op]
    try:
        params = schema.model_validate(raw_params)
    except ValidationError as exc:
        return None, _issues_from(exc, params_pointer)

    if isinstance(params, DomParams) and find_dangerous_html(params.html):
        return None, [{"pointer": join_pointer(params_pointer, "html"), "message": DANGER_MESSAGE}]

    envelope = Envelope(
        op=entry.op,
        params=params,
        id=getattr(entry, "id", None),
        idempotency_key=entry.idempotency_key,
        trace_id=entry.trace_id,
        txn_id=entry.txn_id,
        window_id=entry.window_id or getattr(params, "window_id", None),
    )
    return envelope, []


def total_html_length(batch: Sequence[Envelope]) -> int:
    return sum(len(env.params.html) for env in batch if isinstance(env.params, DomParams))


def validate_batch(raw: Any, pointer: str = "") -> Batch:
    """
    Validate a raw JSON batch (array of entries) into typed envelopes.

    Raises:
        BatchValidationError: with a JSON pointer to the first offending field.
    """
    batch_pointer = pointer or "/batch"
    if not isinstance(raw, (list, tuple)):
        raise BatchValidationError("batch must be an array", pointer or "/")
    if len(raw) > MAX_OPS_PER_BATCH:
        raise BatchValidationError(f"batch too large (max {MAX_OPS_PER_BATCH} operations)", batch_pointer)
    if not raw:
        raise BatchValidationError("batch must contain at least one operation", batch_pointer)

    envelopes: List[Envelope] = []
    issues: List[Dict[str, str]] = []
    for index, entry in enumerate(raw):
        envelope, entry_issues = _validate_entry(entry, join_pointer(pointer, index))
        if entry_issues:
            issues.extend(entry_issues)
            continue
        envelopes.append(envelope)

    if issues:
        first = issues[0]
        raise BatchValidationError(first["message"], first["pointer"], issues)

    if total_html_length(envelopes) > MAX_TOTAL_HTML_PER_BATCH:
        raise BatchValidationError("total HTML too large (max 128KB per batch)", batch_pointer)

    return tuple(envelopes)


def validate_plan(raw: Any, pointer: str = "") -> Plan:
    """Validate a planner object `{summary, risks?, batch, actor_hints?}`."""
    if not isinstance(raw, dict):
        raise BatchValidationError("plan must be an object", pointer or "/")
    try:
        shape = _PlanShape.model_validate(raw)
    except ValidationError as exc:
        issues = _issues_from(exc, pointer)
        raise BatchValidationError(issues[0]["message"], issues[0]["pointer"], issues) from exc

    batch = validate_batch(shape.batch, join_pointer(pointer, "batch"))
    risks = [shape.risks] if isinstance(shape.risks, str) else shape.risks
    hints = [hint.strip() for hint in shape.actor_hints or [] if hint.strip()]
    return Plan(summary=shape.summary, batch=batch, risks=risks, actor_hints=hints or None)


def is_batch(raw: Any) -> bool:
    try:
        validate_batch(raw)
    except BatchValidationError:
        return False
    return True


def is_plan(raw: Any) -> bool:
    try:
        validate_plan(raw)
    except BatchValidationError:
        return False
    return True


__all__ = [
    "MAX_OPS_PER_BATCH",
    "MAX_HTML_PER_OP",
    "MAX_TOTAL_HTML_PER_BATCH",
    "OperationKind",
    "OperationParams",
    "DomParams",
    "OPERATION_SCHEMAS",
    "Envelope",
    "Batch",
    "Plan",
    "validate_batch",
    "validate_plan",
    "is_batch",
    "is_plan",
    "is_dom_html_op",
    "find_dangerous_html",
    "join_pointer",
]
