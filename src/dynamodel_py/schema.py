from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from .attributes import SCALAR_TAGS, FieldType, WireValue, resolve
from .errors import FieldError, SchemaError, ValidationError
from .validation import validate_field_name

_UNSET: Any = object()


class KeyRole(StrEnum):
    HASH = "HASH"
    RANGE = "RANGE"


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: FieldType
    key: KeyRole | None = None
    default: Any = _UNSET

    @property
    def has_default(self) -> bool:
        return self.default is not _UNSET

    def default_for(self, wire_document: Mapping[str, WireValue]) -> Any:
        if callable(self.default):
            return self.default(wire_document)
        return self.default


@dataclass(frozen=True)
class Throughput:
    read_capacity: int = 10
    write_capacity: int = 5

    def to_wire(self) -> dict[str, int]:
        return {"ReadCapacityUnits": self.read_capacity, "WriteCapacityUnits": self.write_capacity}


def _key_role(field_name: str, spec: Any) -> KeyRole | None:
    if not isinstance(spec, Mapping):
        return None
    marker = spec.get("key")
    if marker is None or marker is False:
        return None
    if marker is True or str(marker).lower() == "hash":
        return KeyRole.HASH
    if str(marker).lower() == "range":
        return KeyRole.RANGE
    raise SchemaError(f'field "{field_name}": unsupported key marker {marker!r}')


class Schema:
    """Typed field layout of a table.

    Each field spec is resolved to a FieldType once, at construction. Key roles
    come from the ``key`` option (``True``/``"hash"`` or ``"range"``) and
    defaults from the ``default`` option, which may be a static value or a
    callable receiving the raw wire document.
    """

    def __init__(self, fields: Mapping[str, Any]) -> None:
        if not fields:
            raise SchemaError("schema must define at least one field")

        definitions: dict[str, FieldDefinition] = {}
        hash_keys: list[str] = []
        range_keys: list[str] = []

        for name, spec in fields.items():
            name = str(name)
            validate_field_name(name)
            role = _key_role(name, spec)
            default = spec["default"] if isinstance(spec, Mapping) and "default" in spec else _UNSET
            definitions[name] = FieldDefinition(
                name=name,
                type=resolve(spec, field_name=name),
                key=role,
                default=default,
            )
            if role is KeyRole.HASH:
                hash_keys.append(name)
            elif role is KeyRole.RANGE:
                range_keys.append(name)

        if len(hash_keys) != 1:
            raise SchemaError(f"schema must define exactly one hash key (found {len(hash_keys)})")
        if len(range_keys) > 1:
            raise SchemaError(f"schema must define at most one range key (found {len(range_keys)})")

        self._fields = MappingProxyType(definitions)
        self._hash_key = hash_keys[0]
        self._range_key = range_keys[0] if range_keys else None

    def __repr__(self) -> str:
        return f"Schema({', '.join(f'{f.name}: {f.type.name}' for f in self._fields.values())})"

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    @property
    def fields(self) -> Mapping[str, FieldDefinition]:
        return self._fields

    @property
    def hash_key(self) -> str:
        return self._hash_key

    @property
    def range_key(self) -> str | None:
        return self._range_key

    @property
    def keys(self) -> dict[str, KeyRole]:
        out = {self._hash_key: KeyRole.HASH}
        if self._range_key is not None:
            out[self._range_key] = KeyRole.RANGE
        return out

    @property
    def attribute_types(self) -> dict[str, str]:
        return {name: definition.type.wire_tag for name, definition in self._fields.items()}

    def has_field(self, name: str) -> bool:
        return name in self._fields

    def field_type(self, name: str) -> FieldType:
        try:
            return self._fields[name].type
        except KeyError:
            raise FieldError(name) from None

    def encode_value(self, name: str, value: Any) -> WireValue:
        return self.field_type(name).encode(value)

    def encode(self, document: Mapping[str, Any] | None) -> dict[str, WireValue] | None:
        if document is None:
            return None
        out: dict[str, WireValue] = {}
        for name, value in document.items():
            definition = self._fields.get(name)
            if definition is None or value is None:
                continue
            out[name] = definition.type.encode(value)
        return out

    def decode(self, wire_document: Mapping[str, WireValue] | None) -> dict[str, Any] | None:
        if wire_document is None:
            return None
        out: dict[str, Any] = {}
        for name, definition in self._fields.items():
            raw = wire_document.get(name)
            if raw is not None:
                out[name] = definition.type.decode(raw)
            elif definition.has_default:
                out[name] = definition.default_for(wire_document)
            else:
                out[name] = None
        return out

    def key_of(self, document: Mapping[str, Any]) -> dict[str, WireValue]:
        out: dict[str, WireValue] = {}
        for name in self.keys:
            value = document.get(name)
            if value is None:
                raise ValidationError(f"key field is required: {name}")
            out[name] = self._fields[name].type.encode(value)
        return out


def build_create_table_request(
    table_name: str,
    schema: Schema,
    *,
    throughput: Throughput | None = None,
) -> dict[str, Any]:
    if not table_name:
        raise ValidationError("table_name is required")

    key_schema: list[dict[str, str]] = []
    attribute_definitions: list[dict[str, str]] = []
    for name, role in schema.keys.items():
        wire_tag = schema.field_type(name).wire_tag
        if wire_tag not in SCALAR_TAGS:
            raise SchemaError(f"key attribute must be S/N/B: {name} (got {wire_tag})")
        key_schema.append({"AttributeName": name, "KeyType": str(role)})
        attribute_definitions.append({"AttributeName": name, "AttributeType": wire_tag})

    return {
        "TableName": table_name,
        "KeySchema": key_schema,
        "AttributeDefinitions": attribute_definitions,
        "ProvisionedThroughput": (throughput or Throughput()).to_wire(),
    }
