"""Capability-scoped permission gate for batch operations.

Only the `dom` scope is gated. Inside it the default is deny and operations are
allow-listed by name; `window` and `components` are granted by this layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from batchguard.executor.operations_schema import OperationKind


class PermissionDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


GATED_SCOPES = frozenset({"dom"})
UNGATED_SCOPES = frozenset({"window", "components"})

DOM_HTML_OPERATIONS = frozenset({"dom.set", "dom.replace", "dom.append"})
DOM_SCOPE_ALLOWED = frozenset(
    {
        "state.set",
        "state.get",
        "state.patch",
        "state.watch",
        "state.unwatch",
        "txn.cancel",
        "api.call",
    }
)


@dataclass
class PermissionContext:
    """Operation name plus the narrow slice of params the gate reads."""

    operation: str
    params: Dict[str, Any] = field(default_factory=dict)


def scope_for(op: Union[OperationKind, str]) -> str:
    name = op.value if isinstance(op, OperationKind) else str(op)
    if name.startswith("window."):
        return "window"
    if name.startswith("component."):
        return "components"
    return "dom"


def _coerce_context(context: Union[PermissionContext, Mapping[str, Any]]) -> PermissionContext:
    if isinstance(context, PermissionContext):
        return PermissionContext(operation=context.operation.strip(), params=context.params)
    operation = context.get("operation")
    if isinstance(operation, OperationKind):
        operation = operation.value
    params = context.get("params")
    if params is not None and hasattr(params, "model_dump"):
        params = params.model_dump()
    return PermissionContext(operation=str(operation or "").strip(), params=dict(params or {}))


class PermissionGate:
    """Pure decision table over (scope, operation, params.sanitize)."""

    def is_gated(self, scope: str) -> bool:
        return scope in GATED_SCOPES

    def require(self, scope: str, context: Union[PermissionContext, Mapping[str, Any]]) -> PermissionDecision:
        if scope in UNGATED_SCOPES:
            return PermissionDecision.GRANTED
        if scope not in GATED_SCOPES:
            return PermissionDecision.DENIED

        ctx = _coerce_context(context)
        if ctx.operation in DOM_HTML_OPERATIONS:
            # Only an explicit False opts out; it is never allowed through.
            if ctx.params.get("sanitize") is False:
                return PermissionDecision.DENIED
            return PermissionDecision.GRANTED
        if ctx.operation in DOM_SCOPE_ALLOWED:
            return PermissionDecision.GRANTED
        return PermissionDecision.DENIED

    def check(self, op: Union[OperationKind, str], params: Optional[Mapping[str, Any]] = None) -> PermissionDecision:
        """Resolve the scope for `op` and evaluate it."""
        name = op.value if isinstance(op, OperationKind) else str(op)
        return self.require(scope_for(name), PermissionContext(operation=name, params=dict(params or {})))


__all__ = [
    "PermissionDecision",
    "PermissionContext",
    "PermissionGate",
    "scope_for",
    "GATED_SCOPES",
]
