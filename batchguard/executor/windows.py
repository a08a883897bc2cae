"""
Headless window manager.

Keeps one record per window id: title, clamped geometry, z-order and a parsed
content root (`<div class="window-content"><div id="root"></div></div>`) that
the DOM applier mutates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from batchguard.config import desktop_size
from batchguard.executor.errors import AdapterError, ErrorCode
from batchguard.executor.identity import new_id
from batchguard.executor.operations_schema import (
    WindowCloseParams,
    WindowCreateParams,
    WindowFocusParams,
    WindowMoveParams,
    WindowResizeParams,
    WindowUpdateParams,
)

logger = logging.getLogger(__name__)

DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 480
MIN_WIDTH, MAX_WIDTH = 200, 4000
MIN_HEIGHT, MAX_HEIGHT = 150, 3000
BASE_Z_INDEX = 1000

CONTENT_TEMPLATE = '<div class="window-content"><div id="root"></div></div>'

WindowListener = Callable[[Dict[str, Any]], None]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(value, high))


@dataclass
class WindowGeometry:
    x: float = 0
    y: float = 0
    width: float = DEFAULT_WIDTH
    height: float = DEFAULT_HEIGHT
    z_index: Optional[int] = None


@dataclass
class WindowRecord:
    id: str
    title: str
    geometry: WindowGeometry = field(default_factory=WindowGeometry)
    size: Optional[str] = None
    document: BeautifulSoup = field(default_factory=lambda: BeautifulSoup(CONTENT_TEMPLATE, "html.parser"))

    @property
    def content(self) -> Tag:
        """The `.window-content` element; DOM targets resolve inside it."""
        return self.document.select_one("div.window-content")

    def inner_html(self, selector: Optional[str] = None) -> Optional[str]:
        element = self.content if selector is None else self.content.select_one(selector)
        if element is None:
            return None
        return element.decode_contents()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "x": self.geometry.x,
            "y": self.geometry.y,
            "width": self.geometry.width,
            "height": self.geometry.height,
            "z_index": self.geometry.z_index,
            "size": self.size,
        }


class WindowManager:
    """In-memory window registry with desktop-bounded geometry."""

    def __init__(self, desktop_width: Optional[int] = None, desktop_height: Optional[int] = None) -> None:
        default_w, default_h = desktop_size()
        self.desktop_width = desktop_width or default_w
        self.desktop_height = desktop_height or default_h
        self._windows: Dict[str, WindowRecord] = {}
        self._listeners: List[WindowListener] = []

    def add_listener(self, listener: WindowListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _emit(self, event_type: str, record: WindowRecord) -> None:
        event = {"type": event_type, "id": record.id, "title": record.title}
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Window listener failed for %s event on %s", event_type, record.id)

    def _apply_geometry(
        self,
        record: WindowRecord,
        *,
        x: Optional[float] = None,
        y: Optional[float] = None,
        width: Optional[float] = None,
        height: Optional[float] = None,
        z_index: Optional[int] = None,
    ) -> None:
        geom = record.geometry
        if x is not None:
            geom.x = _clamp(x, 0, max(0, self.desktop_width - 200))
        if y is not None:
            geom.y = _clamp(y, 0, max(0, self.desktop_height - 100))
        if width is not None:
            geom.width = _clamp(width, MIN_WIDTH, MAX_WIDTH)
        if height is not None:
            geom.height = _clamp(height, MIN_HEIGHT, MAX_HEIGHT)
        if z_index is not None:
            geom.z_index = z_index

    def _require(self, window_id: str) -> WindowRecord:
        record = self._windows.get(window_id)
        if record is None:
            raise AdapterError(
                ErrorCode.WINDOW_NOT_FOUND,
                f"Window not found: {window_id}",
                {"window_id": window_id},
            )
        return record

    def create(self, params: WindowCreateParams) -> Dict[str, Any]:
        """Create a window, or update it in place when the id already exists."""
        window_id = params.id or new_id("window")
        existing = self._windows.get(window_id)
        if existing is not None:
            self._apply_geometry(
                existing,
                x=params.x,
                y=params.y,
                width=params.width,
                height=params.height,
                z_index=params.z_index,
            )
            existing.title = params.title
            self._emit("updated", existing)
            return {"window_id": window_id, "applied": False}

        record = WindowRecord(id=window_id, title=params.title, size=params.size)
        self._windows[window_id] = record
        self._apply_geometry(
            record,
            x=params.x,
            y=params.y,
            width=params.width if params.width is not None else DEFAULT_WIDTH,
            height=params.height if params.height is not None else DEFAULT_HEIGHT,
            z_index=params.z_index,
        )
        logger.info("Created window %s (%s)", window_id, params.title)
        self._emit("created", record)
        return {"window_id": window_id, "applied": True}

    def move(self, params: WindowMoveParams) -> Dict[str, Any]:
        record = self._require(params.id)
        self._apply_geometry(record, x=params.x, y=params.y)
        return {"applied": True}

    def resize(self, params: WindowResizeParams) -> Dict[str, Any]:
        record = self._require(params.id)
        self._apply_geometry(record, width=params.width, height=params.height)
        return {"applied": True}

    def focus(self, params: WindowFocusParams) -> Dict[str, Any]:
        """Raise the window above every other one."""
        record = self._require(params.id)
        top = BASE_Z_INDEX
        for other_id, other in self._windows.items():
            if other_id != params.id and other.geometry.z_index is not None:
                top = max(top, other.geometry.z_index)
        self._apply_geometry(record, z_index=top + 1)
        self._emit("focused", record)
        return {"applied": True}

    def update(self, params: WindowUpdateParams) -> Dict[str, Any]:
        record = self._require(params.id)
        self._apply_geometry(
            record,
            x=params.x,
            y=params.y,
            width=params.width,
            height=params.height,
            z_index=params.z_index,
        )
        if params.title is not None:
            record.title = params.title
        self._emit("updated", record)
        return {"applied": True}

    def close(self, params: WindowCloseParams) -> Dict[str, Any]:
        record = self._windows.pop(params.id, None)
        if record is None:
            return {"applied": False}
        logger.info("Closed window %s", params.id)
        self._emit("destroyed", record)
        return {"applied": True}

    def exists(self, window_id: str) -> bool:
        return window_id in self._windows

    def get_record(self, window_id: str) -> Optional[WindowRecord]:
        return self._windows.get(window_id)

    def list(self) -> List[Dict[str, Any]]:
        return [{"id": record.id, "title": record.title} for record in self._windows.values()]

    def clear(self) -> None:
        self._windows.clear()


__all__ = ["WindowGeometry", "WindowRecord", "WindowManager", "WindowListener"]
