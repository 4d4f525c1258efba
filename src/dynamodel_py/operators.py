from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias

from .attributes import SET_TAGS, WireValue
from .errors import FieldError, OperatorError, ValidationError
from .schema import Schema

logger = logging.getLogger(__name__)

_UNSET: Any = object()

CONDITION_SHORTHANDS = {
    "$gt": "GT",
    "$gte": "GE",
    "$lt": "LT",
    "$lte": "LE",
    "$begins": "BEGINS_WITH",
    "$between": "BETWEEN",
    "$in": "IN",
}

NATIVE_CONDITIONS = frozenset(
    {
        "EQ",
        "NE",
        "LE",
        "LT",
        "GE",
        "GT",
        "NOT_NULL",
        "NULL",
        "CONTAINS",
        "NOT_CONTAINS",
        "BEGINS_WITH",
        "IN",
        "BETWEEN",
    }
)

UPDATE_SHORTHANDS = {"$set": "PUT", "$unset": "DELETE", "$inc": "ADD"}

NATIVE_ACTIONS = frozenset({"PUT", "ADD", "DELETE"})

EXISTS_MARKER = "$exists"

_NO_OPERAND = frozenset({"NULL", "NOT_NULL"})
_ELEMENT_OPERAND = frozenset({"CONTAINS", "NOT_CONTAINS"})


@dataclass(frozen=True)
class Equals:
    value: Any


@dataclass(frozen=True)
class Shorthand:
    marker: str
    op: str
    operand: Any


@dataclass(frozen=True)
class Native:
    op: str
    operand: Any


ConditionExpression: TypeAlias = Equals | Shorthand | Native


@dataclass(frozen=True)
class UpdateAction:
    field: str
    action: str
    value: Any = _UNSET

    @property
    def has_value(self) -> bool:
        return self.value is not _UNSET


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def parse_condition(value: Any) -> ConditionExpression:
    if isinstance(value, Mapping) and len(value) == 1:
        ((key, operand),) = value.items()
        key = str(key)
        if key.startswith("$"):
            op = CONDITION_SHORTHANDS.get(key)
            if op is None:
                raise OperatorError(key)
            return Shorthand(marker=key, op=op, operand=operand)
        if key in NATIVE_CONDITIONS:
            return Native(op=key, operand=operand)
    return Equals(value)


class OperatorCompiler:
    """Translates portable condition/update/expectation expressions into the
    legacy wire structures (``KeyConditions``/``ScanFilter``,
    ``AttributeUpdates`` and ``Expected``).

    Every referenced field must exist in the schema; operands are encoded with
    that field's type.
    """

    def __init__(self, schema: Schema) -> None:
        self._schema = schema

    def _require_field(self, name: Any) -> str:
        name = str(name)
        if not self._schema.has_field(name):
            raise FieldError(name)
        return name

    def _encode(self, field: str, value: Any) -> WireValue:
        return self._schema.encode_value(field, value)

    def _encode_element(self, field: str, value: Any) -> WireValue:
        field_type = self._schema.field_type(field)
        if field_type.wire_tag not in SET_TAGS.values():
            return field_type.encode(value)
        ((tag, members),) = field_type.encode([value]).items()
        return {tag[0]: members[0]}

    def compile_condition(self, field: str, expression: ConditionExpression) -> dict[str, Any]:
        if isinstance(expression, Equals):
            op, operand = "EQ", expression.value
        elif isinstance(expression, (Shorthand, Native)):
            op, operand = expression.op, expression.operand
        else:
            raise ValidationError(f"unsupported condition expression: {expression!r}")

        values: list[WireValue]
        if op == "BETWEEN":
            if not (_is_sequence(operand) and len(operand) == 2):
                raise ValidationError(
                    "BETWEEN operator must have a sequence of two elements as the comparison value"
                )
            values = [self._encode(field, operand[0]), self._encode(field, operand[1])]
        elif op == "IN":
            if not isinstance(operand, (list, tuple, set, frozenset)):
                raise ValidationError("IN operator requires a sequence of values")
            values = [self._encode(field, v) for v in operand]
        elif _is_sequence(operand):
            raise ValidationError(f"{op} operator does not support sequence values")
        elif op in _NO_OPERAND:
            values = []
        elif op in _ELEMENT_OPERAND:
            values = [self._encode_element(field, operand)]
        else:
            values = [self._encode(field, operand)]

        return {"AttributeValueList": values, "ComparisonOperator": op}

    def compile_conditions(self, conditions: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        if conditions is None:
            raise ValidationError("conditions are required")

        result: dict[str, dict[str, Any]] = {}
        for key, value in conditions.items():
            field = self._require_field(key)
            result[field] = self.compile_condition(field, parse_condition(value))
            logger.debug("condition %s %s", field, result[field]["ComparisonOperator"])
        return result

    def parse_updates(self, updates: Mapping[str, Any]) -> list[UpdateAction]:
        actions: list[UpdateAction] = []
        for key, value in updates.items():
            key = str(key)

            if key.startswith("$"):
                action = UPDATE_SHORTHANDS.get(key)
                if action is None:
                    raise OperatorError(key, kind="update")
                if not isinstance(value, Mapping):
                    raise ValidationError(f"{key} requires a mapping of field to value")
                for name, operand in value.items():
                    field = self._require_field(name)
                    if action == "DELETE":
                        actions.append(UpdateAction(field=field, action=action))
                    else:
                        actions.append(UpdateAction(field=field, action=action, value=operand))
                continue

            field = self._require_field(key)
            if isinstance(value, Mapping) and any(str(k) in NATIVE_ACTIONS for k in value):
                if len(value) != 1:
                    raise ValidationError(f"update for {field} must name exactly one action")
                ((action, operand),) = value.items()
                action = str(action)
                if action == "DELETE" and operand is None:
                    actions.append(UpdateAction(field=field, action=action))
                else:
                    actions.append(UpdateAction(field=field, action=action, value=operand))
                continue

            actions.append(UpdateAction(field=field, action="PUT", value=value))
        return actions

    def compile_updates(self, updates: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
        if updates is None:
            raise ValidationError("updates are required")

        result: dict[str, dict[str, Any]] = {}
        for update in self.parse_updates(updates):
            if update.field in result:
                raise ValidationError(f"field updated more than once: {update.field}")
            if not update.has_value:
                result[update.field] = {"Action": update.action}
                continue
            if update.value is None:
                raise ValidationError(f"{update.action} requires a value: {update.field}")
            result[update.field] = {
                "Action": update.action,
                "Value": self._encode(update.field, update.value),
            }
            logger.debug("update %s %s", update.field, update.action)
        return result

    def compile_expectations(self, conditions: Mapping[str, Any] | None) -> dict[str, dict[str, Any]] | None:
        if conditions is None:
            return None

        result: dict[str, dict[str, Any]] = {}
        for key, value in conditions.items():
            field = self._require_field(key)
            if isinstance(value, Mapping):
                if len(value) != 1:
                    raise ValidationError(f"expectation for {field} must name exactly one operator")
                ((marker, operand),) = value.items()
                if marker != EXISTS_MARKER:
                    raise OperatorError(str(marker), kind="expectation")
                result[field] = {"Exists": bool(operand)}
            elif value is None:
                raise ValidationError(f"expectation for {field} requires a value")
            else:
                result[field] = {"Value": self._encode(field, value)}
        return result
