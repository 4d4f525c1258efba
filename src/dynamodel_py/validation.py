from __future__ import annotations

import re

from .errors import ValidationError

MaxFieldNameLength = 255
MinTableNameLength = 3
MaxTableNameLength = 255

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")


class NameValidationError(ValidationError):
    def __init__(self, *, type: str, detail: str) -> None:
        super().__init__(f"{type}: {detail}")
        self.type = type
        self.detail = detail


def _contains_control_characters(value: str) -> bool:
    return any(ord(ch) < 32 or ord(ch) == 127 for ch in value)


def validate_field_name(field: str) -> None:
    if not field:
        raise NameValidationError(type="InvalidField", detail="field name cannot be empty")
    if len(field) > MaxFieldNameLength:
        raise NameValidationError(type="InvalidField", detail="field name exceeds maximum length")
    if _contains_control_characters(field):
        raise NameValidationError(type="InvalidField", detail="field name contains control characters")


def validate_table_name(name: str) -> None:
    if not name:
        raise NameValidationError(type="InvalidTableName", detail="table name is required")

    if len(name) < MinTableNameLength or len(name) > MaxTableNameLength:
        raise NameValidationError(type="InvalidTableName", detail="table name length invalid")

    if _NAME_PATTERN.match(name) is None:
        raise NameValidationError(type="InvalidTableName", detail="table name contains invalid characters")


def validate_index_name(name: str) -> None:
    if not name:
        raise NameValidationError(type="InvalidIndexName", detail="index name is required")

    if len(name) < MinTableNameLength or len(name) > MaxTableNameLength:
        raise NameValidationError(type="InvalidIndexName", detail="index name length invalid")

    if _NAME_PATTERN.match(name) is None:
        raise NameValidationError(type="InvalidIndexName", detail="index name contains invalid characters")
