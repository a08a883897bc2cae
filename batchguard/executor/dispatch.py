from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Union

from batchguard.executor.operations_schema import Envelope, OperationKind

OperationHandler = Callable[[Envelope], Any]


def _key(op: Union[OperationKind, str]) -> str:
    return op.value if isinstance(op, OperationKind) else str(op)


class Dispatcher:
    """
    Minimal forwarding shell routing validated envelopes to external collaborators.

    Components, state, api and txn ops are not applied by this package; callers
    register handlers for the kinds they own. A test-mode mapping takes priority
    when `test_mode` is set.
    """

    def __init__(
        self,
        handlers: Optional[Mapping[Union[OperationKind, str], OperationHandler]] = None,
        test_mode_handlers: Optional[Mapping[Union[OperationKind, str], OperationHandler]] = None,
        *,
        test_mode: bool = False,
    ) -> None:
        self._handlers: Dict[str, OperationHandler] = {_key(op): fn for op, fn in (handlers or {}).items()}
        self._test_handlers: Dict[str, OperationHandler] = {
            _key(op): fn for op, fn in (test_mode_handlers or {}).items()
        }
        self.test_mode = bool(test_mode)

    def register(self, op: Union[OperationKind, str], handler: OperationHandler) -> None:
        self._handlers[_key(op)] = handler

    def get_handler(self, op: Union[OperationKind, str]) -> Optional[OperationHandler]:
        key = _key(op)
        if self.test_mode and self._test_handlers:
            handler = self._test_handlers.get(key)
            if handler:
                return handler
        return self._handlers.get(key)

    def can_dispatch(self, op: Union[OperationKind, str]) -> bool:
        return self.get_handler(op) is not None

    def dispatch(self, envelope: Envelope) -> Any:
        handler = self.get_handler(envelope.op)
        if handler is None:
            return None
        return handler(envelope)


__all__ = ["Dispatcher", "OperationHandler"]
