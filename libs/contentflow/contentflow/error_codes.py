"""Canonical error codes surfaced to callers."""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    UNKNOWN = "UNKNOWN"

    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    INVALID_STATE = "INVALID_STATE"
