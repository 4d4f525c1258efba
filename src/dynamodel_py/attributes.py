from __future__ import annotations

import base64
import json
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol, TypeAlias

from .errors import SchemaError, ValidationError

WireValue: TypeAlias = dict[str, Any]

SCALAR_TAGS = ("S", "N", "B")
SET_TAGS = {"S": "SS", "N": "NS", "B": "BS"}

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_INTEGER = re.compile(r"^[+-]?\d+$")


class AttributeConverter(Protocol):
    def encode(self, value: Any) -> WireValue: ...

    def decode(self, value: WireValue) -> Any: ...


@dataclass(frozen=True)
class FieldType:
    name: str
    wire_tag: str
    encode: Callable[[Any], WireValue]
    decode: Callable[[WireValue], Any]


def _payload(value: WireValue, tag: str) -> Any:
    if not isinstance(value, Mapping) or tag not in value:
        raise ValidationError(f"expected a {tag} attribute value, got {value!r}")
    return value[tag]


def _number_text(value: Any) -> str:
    if isinstance(value, bool):
        raise ValidationError("boolean is not a number")
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    text = str(value).strip()
    try:
        Decimal(text)
    except InvalidOperation as err:
        raise ValidationError(f"not a number: {value!r}") from err
    return text


def _parse_number(text: str) -> int | float:
    if _INTEGER.match(text):
        return int(text)
    return float(text)


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise ValidationError(f"binary value must be bytes, got {type(value).__name__}")


def _from_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return base64.b64decode(str(value))


def _to_millis(value: Any) -> int:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return (value - _EPOCH) // timedelta(milliseconds=1)
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return int(value)
    raise ValidationError(f"timestamp value must be a datetime, got {type(value).__name__}")


def _from_millis(value: WireValue) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(_payload(value, "N")))


def _decode_boolean(value: WireValue) -> bool | None:
    flag = _payload(value, "S")
    if flag == "Y":
        return True
    if flag == "N":
        return False
    return None


def _decode_any(value: WireValue) -> Any:
    for tag in ("S", "N", "B", "SS", "NS", "BS"):
        if value.get(tag) is not None:
            return value[tag]
    return None


TEXT = FieldType("text", "S", lambda v: {"S": str(v)}, lambda v: _payload(v, "S"))
NUMBER = FieldType("number", "N", lambda v: {"N": _number_text(v)}, lambda v: _parse_number(_payload(v, "N")))
INTEGER = FieldType(
    "integer", "N", lambda v: {"N": _number_text(v)}, lambda v: int(Decimal(_payload(v, "N")))
)
FLOAT = FieldType("float", "N", lambda v: {"N": _number_text(v)}, lambda v: float(_payload(v, "N")))
DECIMAL = FieldType("decimal", "N", lambda v: {"N": _number_text(v)}, lambda v: Decimal(_payload(v, "N")))
BOOLEAN = FieldType("boolean", "S", lambda v: {"S": "Y" if v else "N"}, _decode_boolean)
TIMESTAMP = FieldType("timestamp", "N", lambda v: {"N": str(_to_millis(v))}, _from_millis)
BINARY = FieldType("binary", "B", lambda v: {"B": _to_bytes(v)}, lambda v: _from_bytes(_payload(v, "B")))
JSON = FieldType(
    "json",
    "S",
    lambda v: {"S": json.dumps(v, separators=(",", ":"), default=str)},
    lambda v: json.loads(_payload(v, "S")),
)
DEFAULT = FieldType("any", "S", lambda v: {"S": str(v)}, _decode_any)

_BY_TAG: dict[str, FieldType] = {
    "text": TEXT,
    "string": TEXT,
    "number": NUMBER,
    "integer": INTEGER,
    "float": FLOAT,
    "decimal": DECIMAL,
    "boolean": BOOLEAN,
    "timestamp": TIMESTAMP,
    "binary": BINARY,
    "json": JSON,
    "any": DEFAULT,
}

_BY_TYPE: dict[Any, FieldType] = {
    str: TEXT,
    int: INTEGER,
    float: FLOAT,
    Decimal: DECIMAL,
    bool: BOOLEAN,
    datetime: TIMESTAMP,
    bytes: BINARY,
    bytearray: BINARY,
    dict: JSON,
    object: DEFAULT,
}

_SET_ELEMENTS = {"text", "number", "integer", "float", "decimal", "binary"}


def set_of(element: FieldType) -> FieldType:
    if element.name not in _SET_ELEMENTS:
        raise SchemaError(f"sets of {element.name} are not supported")

    scalar = element.wire_tag
    tag = SET_TAGS[scalar]

    def encode(value: Any) -> WireValue:
        if isinstance(value, (str, bytes, bytearray, Mapping)) or not isinstance(value, Iterable):
            raise ValidationError(f"{tag} value must be a collection")
        encoded = sorted({element.encode(v)[scalar] for v in value})
        if not encoded:
            raise ValidationError(f"{tag} value must not be empty")
        return {tag: encoded}

    def decode(value: WireValue) -> set[Any]:
        return {element.decode({scalar: v}) for v in _payload(value, tag)}

    return FieldType(f"set<{element.name}>", tag, encode, decode)


def _custom_pair(spec: Any) -> FieldType | None:
    if isinstance(spec, FieldType):
        return spec
    if isinstance(spec, Mapping):
        encode, decode = spec.get("encode"), spec.get("decode")
        wire_tag = str(spec.get("wire_tag", "S"))
    elif not isinstance(spec, (type, str, bytes, list, tuple)):
        encode, decode = getattr(spec, "encode", None), getattr(spec, "decode", None)
        wire_tag = str(getattr(spec, "wire_tag", "S"))
    else:
        return None
    if callable(encode) and callable(decode):
        return FieldType("custom", wire_tag, encode, decode)
    return None


def _bare(spec: Any) -> FieldType | None:
    if isinstance(spec, str):
        return _BY_TAG.get(spec.strip().lower())
    if isinstance(spec, type):
        return _BY_TYPE.get(spec)
    return None


def resolve(spec: Any, *, field_name: str | None = None) -> FieldType:
    label = field_name or "<anonymous>"

    custom = _custom_pair(spec)
    if custom is not None:
        return custom

    if isinstance(spec, Mapping):
        if "type" in spec:
            return resolve(spec["type"], field_name=field_name)
        if not spec:
            return JSON
        raise SchemaError(f'unable to map field "{label}": missing data type')

    bare = _bare(spec)
    if bare is not None:
        return bare

    if isinstance(spec, (list, tuple)) and len(spec) == 1:
        element = _bare(spec[0])
        if element is not None:
            return set_of(element)

    raise SchemaError(f'unable to map field "{label}": no mapper can handle {spec!r}')
