"""
Shared validation helpers for memory service inputs.
"""

from __future__ import annotations

import json
from typing import Optional

from core.config import MAX_METADATA_BYTES, MAX_SHORT_TEXT_LENGTH
from core.errors import ValidationIssue

MEMORY_TYPES = ("working", "episodic", "semantic", "procedural")
VISUAL_MEMORY_TYPES = ("working", "episodic")


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_metadata(metadata: Optional[dict], field: str) -> None:
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    try:
        size = len(json.dumps(metadata, default=str))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_memory_type(value: str, allowed: tuple[str, ...] = MEMORY_TYPES) -> None:
    if value not in allowed:
        raise ValidationIssue(
            f"memory_type must be one of: {', '.join(allowed)}",
            field="memory_type",
            error_type="invalid_choice",
            data={"allowed": list(allowed)},
        )


def validate_identifier(value, field: str) -> None:
    """Agent and user identifiers: non-empty strings or non-negative ints."""
    if isinstance(value, bool):
        raise ValidationIssue(f"{field} must be a string or integer", field=field, error_type="invalid_type")
    if isinstance(value, int):
        if value < 0:
            raise ValidationIssue(f"{field} must be non-negative", field=field, error_type="out_of_range")
        return
    validate_required_text(value, field, MAX_SHORT_TEXT_LENGTH)
