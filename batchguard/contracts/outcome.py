from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorReport(BaseModel):
    op_index: int
    code: str
    message: str


class BatchMetadata(BaseModel):
    batch_id: str
    ops_hash: str
    timestamp: str


class ApplyOutcome(BaseModel):
    """Result of applying one batch, emitted to the telemetry/UI side channel."""

    success: bool = True
    applied: int = 0
    skipped_duplicates: int = 0
    denied_by_policy: int = 0
    deferred: int = 0
    errors: List[ErrorReport] = Field(default_factory=list)
    batch_id: str = ""
    ops_hash: Optional[str] = None
    trace_id: Optional[str] = None


__all__ = ["ErrorReport", "BatchMetadata", "ApplyOutcome"]
