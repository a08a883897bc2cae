"""
Utilities to parse model output into a validated, stamped batch.

The first JSON value found in a text blob (preferring content inside a ```json
code fence) is decoded and handed to the single ingress. Nothing is applied here.
"""

import json
from typing import Any, Optional

from batchguard.executor.errors import BatchValidationError
from batchguard.executor.ingress import IngressResult, ingest

_OPENERS = {"{": "}", "[": "]"}


def _extract_json_from_fence(text: str) -> Optional[str]:
    marker = "```json"
    start = text.find(marker)
    if start == -1:
        return None
    start += len(marker)
    end = text.find("```", start)
    if end == -1:
        return None
    return text[start:end].strip()


def _extract_first_json_value(text: str) -> Optional[str]:
    """Extract the first JSON object or array substring by bracket matching."""
    starts = [idx for idx in (text.find("{"), text.find("[")) if idx != -1]
    if not starts:
        return None
    start = min(starts)
    opener = text[start]
    closer = _OPENERS[opener]

    depth = 0
    in_string = False
    escape = False
    for idx in range(start, len(text)):
        ch = text[idx]
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
        if in_string:
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start : idx + 1]
    return None


def extract_json(llm_output: str) -> Any:
    """Return the decoded JSON value embedded in `llm_output`."""
    if not isinstance(llm_output, str):
        raise BatchValidationError("model output must be a string", "/")

    candidate = _extract_json_from_fence(llm_output) or _extract_first_json_value(llm_output)
    if not candidate:
        raise BatchValidationError("no JSON value found in model output", "/")

    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise BatchValidationError(f"failed to parse JSON: {exc}", "/") from exc


def parse_batch_reply(llm_output: str, fallback_trace_id: Optional[str] = None) -> IngressResult:
    """
    Extract, validate and stamp a batch or plan from model output.

    Raises:
        BatchValidationError: no JSON found, malformed JSON, or an invalid batch.
    """
    return ingest(extract_json(llm_output), fallback_trace_id=fallback_trace_id)
