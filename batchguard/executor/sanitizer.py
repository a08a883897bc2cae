"""
Strict HTML sanitizer for DOM mutations.

Pipeline:
1. Reject inputs over MAX_SANITIZE_INPUT before parsing anything.
2. Drop disallowed elements together with their content (BeautifulSoup pre-pass).
3. bleach allow-list pass: tags, attributes (curated list plus any data-*), http/https only.
4. html5lib filter enforcing URL policy on href/src/srcset, id syntax and rel on target=_blank links.
"""

from __future__ import annotations

import html as html_lib
import logging
import re
from typing import Dict, List, NewType, Optional, Tuple

from bleach.html5lib_shim import Filter
from bleach.sanitizer import Cleaner
from bs4 import BeautifulSoup

from batchguard.executor.errors import SanitizationInputTooLarge

logger = logging.getLogger(__name__)

SafeHtml = NewType("SafeHtml", str)

MAX_SANITIZE_INPUT = 64 * 1024

ALLOWED_TAGS = frozenset(
    {
        "a", "abbr", "article", "aside", "b", "bdi", "bdo", "blockquote", "br", "button",
        "caption", "code", "col", "colgroup", "dd", "del", "details", "div", "dl", "dt",
        "em", "figcaption", "figure", "footer", "h1", "h2", "h3", "h4", "h5", "h6",
        "header", "hr", "i", "img", "ins", "kbd", "label", "li", "main", "mark", "nav",
        "ol", "p", "picture", "pre", "q", "s", "samp", "section", "small", "span",
        "strong", "sub", "summary", "sup", "table", "tbody", "td", "tfoot", "th",
        "thead", "time", "tr", "u", "ul",
    }
)

ARIA_ATTRIBUTES = frozenset(
    {
        "aria-activedescendant", "aria-atomic", "aria-autocomplete", "aria-busy",
        "aria-checked", "aria-colcount", "aria-colindex", "aria-colspan", "aria-controls",
        "aria-current", "aria-describedby", "aria-description", "aria-details",
        "aria-disabled", "aria-dropeffect", "aria-errormessage", "aria-expanded",
        "aria-flowto", "aria-grabbed", "aria-haspopup", "aria-hidden", "aria-invalid",
        "aria-keyshortcuts", "aria-label", "aria-labelledby", "aria-level", "aria-live",
        "aria-modal", "aria-multiline", "aria-multiselectable", "aria-orientation",
        "aria-owns", "aria-placeholder", "aria-pressed", "aria-readonly", "aria-required",
        "aria-roledescription", "aria-rowcount", "aria-rowindex", "aria-rowspan",
        "aria-selected", "aria-setsize", "aria-sort", "aria-valuemax", "aria-valuemin",
        "aria-valuenow", "aria-valuetext",
    }
)

ALLOWED_ATTRIBUTES = ARIA_ATTRIBUTES | frozenset(
    {
        "abbr", "align", "alt", "class", "colspan", "data-testid", "data-id", "data-name",
        "data-role", "dir", "download", "draggable", "headers", "href", "hreflang", "id",
        "lang", "loading", "rel", "role", "rowspan", "scope", "src", "srcset", "sizes",
        "tabindex", "target", "title", "type", "value", "width", "height",
    }
)

FORBIDDEN_ATTRIBUTES = frozenset(
    {
        "xlink:href", "xmlns", "formaction", "formenctype", "formmethod",
        "formnovalidate", "formtarget", "action", "style",
    }
)

ALLOWED_PROTOCOLS = frozenset({"http", "https"})

_UNWRAP_TAGS = frozenset({"html", "body"})
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*:", re.IGNORECASE)
_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9._:-]*$")
_ID_PREFIX = "user-content-"

_HREF = (None, "href")
_SRC = (None, "src")
_SRCSET = (None, "srcset")
_ID = (None, "id")
_TARGET = (None, "target")
_REL = (None, "rel")


def is_safe_url(raw: str) -> bool:
    """Accept fragments, absolute paths, ./ and ../ relatives, and http(s) URLs."""
    value = (raw or "").strip()
    if not value:
        return False
    if value.startswith("#"):
        return True
    if value.startswith("//"):
        return False
    if value.startswith("/") or value.startswith("./") or value.startswith("../"):
        return True
    match = _SCHEME_RE.match(value)
    if match:
        return match.group(0)[:-1].lower() in ALLOWED_PROTOCOLS
    return ":" not in value


def escape_html(value: str) -> str:
    return html_lib.escape(value, quote=True)


def _attribute_allowed(tag: str, name: str, value: str) -> bool:
    lowered = name.lower()
    if lowered in FORBIDDEN_ATTRIBUTES or lowered.startswith("on"):
        return False
    if lowered.startswith("data-"):
        return True
    return lowered in ALLOWED_ATTRIBUTES


def _scrub_srcset(value: str) -> Optional[str]:
    safe: List[str] = []
    for candidate in value.split(","):
        parts = candidate.split()
        if not parts:
            continue
        url = parts[0]
        if is_safe_url(url):
            safe.append(f"{url} {parts[1]}" if len(parts) > 1 else url)
    return ", ".join(safe) if safe else None


def _restore_id(value: str) -> Optional[str]:
    restored = value[len(_ID_PREFIX):] if value.startswith(_ID_PREFIX) else value
    return restored if _ID_RE.match(restored) else None


class UrlPolicyFilter(Filter):
    """Post-sanitize pass over start tags; runs after bleach's own sanitizer filter."""

    def __iter__(self):
        for token in Filter.__iter__(self):
            if token["type"] in ("StartTag", "EmptyTag") and token.get("data"):
                token["data"] = self._scrub(token["name"], token["data"])
            yield token

    def _scrub(self, tag: str, attrs: Dict[Tuple[Optional[str], str], str]) -> Dict[Tuple[Optional[str], str], str]:
        cleaned = dict(attrs)
        for key in (_HREF, _SRC):
            if key in cleaned:
                value = (cleaned[key] or "").strip()
                if is_safe_url(value):
                    cleaned[key] = value
                else:
                    del cleaned[key]

        if _SRCSET in cleaned:
            srcset = _scrub_srcset(cleaned[_SRCSET] or "")
            if srcset is None:
                del cleaned[_SRCSET]
            else:
                cleaned[_SRCSET] = srcset

        if _ID in cleaned and cleaned[_ID]:
            restored = _restore_id(cleaned[_ID])
            if restored is None:
                del cleaned[_ID]
            else:
                cleaned[_ID] = restored

        if tag == "a" and cleaned.get(_TARGET) == "_blank":
            tokens = dict.fromkeys((cleaned.get(_REL) or "").split())
            tokens.setdefault("noopener")
            tokens.setdefault("noreferrer")
            cleaned[_REL] = " ".join(tokens)
        return cleaned


_CLEANER = Cleaner(
    tags=ALLOWED_TAGS,
    attributes=_attribute_allowed,
    protocols=ALLOWED_PROTOCOLS,
    strip=True,
    strip_comments=True,
    filters=[UrlPolicyFilter],
)


def _drop_disallowed_elements(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    removed = 0
    for element in soup.find_all(True):
        if element.decomposed:
            continue
        if element.name in _UNWRAP_TAGS:
            element.unwrap()
        elif element.name not in ALLOWED_TAGS:
            element.decompose()
            removed += 1
    if removed:
        logger.debug("Dropped %s disallowed element(s) before sanitizing", removed)
    return str(soup)


def sanitize_strict(html: str) -> SafeHtml:
    """
    Sanitize untrusted HTML for insertion into a window.

    Raises:
        SanitizationInputTooLarge: input longer than MAX_SANITIZE_INPUT characters.
    """
    if not isinstance(html, str):
        raise TypeError(f"html must be a string, got {type(html).__name__}")
    if len(html) > MAX_SANITIZE_INPUT:
        raise SanitizationInputTooLarge(len(html), MAX_SANITIZE_INPUT)
    if not html:
        return SafeHtml("")
    return SafeHtml(_CLEANER.clean(_drop_disallowed_elements(html)))


__all__ = [
    "SafeHtml",
    "MAX_SANITIZE_INPUT",
    "ALLOWED_TAGS",
    "ALLOWED_ATTRIBUTES",
    "is_safe_url",
    "escape_html",
    "sanitize_strict",
]
