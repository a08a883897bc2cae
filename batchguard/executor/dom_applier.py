"""
DOM application with mandatory sanitization and per-target deduplication.

The dedup key is `(window_id, target)`; its value is the FNV-1a hash of the last
HTML successfully applied there. Identical content is reported as a skipped
duplicate instead of being written again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Tuple, Union

from bs4 import BeautifulSoup, Tag

from batchguard.executor.errors import AdapterError, ErrorCode
from batchguard.executor.identity import fnv1a_hash
from batchguard.executor.operations_schema import DomParams, OperationKind
from batchguard.executor.sanitizer import SafeHtml, sanitize_strict
from batchguard.executor.windows import WindowManager

logger = logging.getLogger(__name__)

DOM_MODES = ("set", "replace", "append")

MODE_FOR_OP: Dict[OperationKind, str] = {
    OperationKind.DOM_SET: "set",
    OperationKind.DOM_REPLACE: "replace",
    OperationKind.DOM_APPEND: "append",
}


class DomTarget(NamedTuple):
    window_id: str
    target: str
    html: str
    sanitize: Optional[bool]
    mode: Optional[str]


@dataclass(frozen=True)
class DomApplyResult:
    applied: int = 0
    skipped_duplicates: int = 0


def _as_target(params: Union[DomParams, Mapping[str, Any]]) -> DomTarget:
    if isinstance(params, DomParams):
        return DomTarget(params.window_id, params.target, params.html, params.sanitize, params.mode)
    return DomTarget(
        window_id=params.get("windowId") or params.get("window_id") or "",
        target=params.get("target") or "",
        html=params.get("html") or "",
        sanitize=params.get("sanitize"),
        mode=params.get("mode"),
    )


def _fragment_nodes(html: str) -> List[Any]:
    fragment = BeautifulSoup(html, "html.parser")
    return [node.extract() for node in list(fragment.contents)]


class DomApplier:
    def __init__(self, windows: WindowManager, *, enable_deduplication: bool = True) -> None:
        self.windows = windows
        self.enable_deduplication = enable_deduplication
        self._content_hashes: Dict[Tuple[str, str], str] = {}

    @staticmethod
    def dedupe_key(window_id: str, target: str) -> Tuple[str, str]:
        return (window_id, target)

    def apply(self, params: Union[DomParams, Mapping[str, Any]], mode: Optional[str] = None) -> DomApplyResult:
        """
        Sanitize and write HTML into `target` inside window `window_id`.

        `mode` is the op-derived default; `params.mode` overrides it.

        Raises:
            AdapterError: ValidationFailed for an unknown mode, WindowNotFound for a
                missing window, DomApplyFailed when the target does not resolve or the
                mutation itself fails.
        """
        dom_target = _as_target(params)
        resolved_mode = dom_target.mode or mode or "set"
        if resolved_mode not in DOM_MODES:
            raise AdapterError(
                ErrorCode.VALIDATION_FAILED,
                f"Invalid DOM mode: {resolved_mode}",
                {"mode": resolved_mode},
            )

        record = self.windows.get_record(dom_target.window_id) if self.windows.exists(dom_target.window_id) else None
        if record is None:
            raise AdapterError(
                ErrorCode.WINDOW_NOT_FOUND,
                f"Window not found: {dom_target.window_id}",
                {"window_id": dom_target.window_id},
            )

        context = {"window_id": dom_target.window_id, "target": dom_target.target, "mode": resolved_mode}
        try:
            element = record.content.select_one(dom_target.target)
        except Exception as exc:  # noqa: BLE001
            raise AdapterError(
                ErrorCode.DOM_APPLY_FAILED,
                f"Invalid target selector: {dom_target.target}",
                {**context, "error": exc},
            ) from exc
        if element is None:
            raise AdapterError(ErrorCode.DOM_APPLY_FAILED, f"Target element not found: {dom_target.target}", context)

        # Only an explicit False skips sanitizing; the permission gate refuses that path.
        html: Union[SafeHtml, str]
        if dom_target.sanitize is False:
            html = dom_target.html
        else:
            html = sanitize_strict(dom_target.html)

        key = self.dedupe_key(dom_target.window_id, dom_target.target)
        content_hash = fnv1a_hash(html)
        if self.enable_deduplication and self._content_hashes.get(key) == content_hash:
            logger.debug("Skipping duplicate DOM content for %s", key)
            return DomApplyResult(applied=0, skipped_duplicates=1)

        try:
            self._mutate(element, html, resolved_mode)
        except Exception as exc:  # noqa: BLE001
            raise AdapterError(
                ErrorCode.DOM_APPLY_FAILED,
                f"DOM mutation failed: {exc}",
                {**context, "error": exc},
            ) from exc

        if self.enable_deduplication:
            self._content_hashes[key] = content_hash
        return DomApplyResult(applied=1, skipped_duplicates=0)

    def _mutate(self, element: Tag, html: Union[SafeHtml, str], mode: str) -> None:
        nodes = _fragment_nodes(html)
        if mode == "set":
            element.clear()
            for node in nodes:
                element.append(node)
        elif mode == "replace":
            if element.parent is None:
                raise RuntimeError("target is detached")
            if nodes:
                element.replace_with(*nodes)
            else:
                element.extract()
        else:
            for node in nodes:
                element.append(node)

    def forget(self, window_id: str) -> None:
        """Drop dedup entries for a closed window."""
        for key in [k for k in self._content_hashes if k[0] == window_id]:
            del self._content_hashes[key]

    def reset(self) -> None:
        self._content_hashes.clear()


__all__ = ["DomApplier", "DomApplyResult", "DomTarget", "MODE_FOR_OP", "DOM_MODES"]
