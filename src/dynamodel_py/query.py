from __future__ import annotations

import base64
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Generator, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from .attributes import WireValue
from .errors import StateError, ValidationError
from .operators import OperatorCompiler
from .schema import Schema
from .validation import validate_index_name

logger = logging.getLogger(__name__)

Execute: TypeAlias = Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]
Ready: TypeAlias = Callable[[], Awaitable[None]]

SELECT = "select"
CONSISTENT_READ = "consistent_read"
CONSUMED_CAPACITY = "return_consumed_capacity"
COLLECTION_METRICS = "return_item_collection_metrics"
RETURN_VALUES = "return_values"
INDEX = "index"
SCAN_FORWARD = "scan_forward"
LIMIT = "limit"
COUNT = "count"
EXPECTED = "expected"
START_FROM = "start_from"

READ_CAPABILITIES = frozenset({SELECT, CONSISTENT_READ, CONSUMED_CAPACITY})
WRITE_CAPABILITIES = frozenset({CONSUMED_CAPACITY, COLLECTION_METRICS, RETURN_VALUES, EXPECTED})
QUERY_CAPABILITIES = frozenset(
    {SELECT, CONSISTENT_READ, CONSUMED_CAPACITY, INDEX, SCAN_FORWARD, LIMIT, COUNT, START_FROM}
)
SCAN_CAPABILITIES = frozenset({SELECT, CONSUMED_CAPACITY, INDEX, LIMIT, COUNT, START_FROM})


@dataclass(frozen=True)
class QueryResult:
    item: dict[str, Any] | None = None
    items: list[dict[str, Any]] = field(default_factory=list)
    count: int | None = None
    scanned_count: int | None = None
    last_key: dict[str, Any] | None = None
    attributes: dict[str, Any] | None = None
    consumed_capacity: Any = None
    response: Mapping[str, Any] = field(default_factory=dict)


def _wire_flag(value: bool | str, *, on: str, off: str = "NONE") -> str:
    if isinstance(value, bool):
        return on if value else off
    return str(value)


class QueryCursor:
    """One prepared wire operation plus its pagination state.

    Builder methods mutate the request parameters and return the cursor, so
    calls chain; the last call for a given parameter wins. Only the builders
    named in ``capabilities`` are available for the operation. Awaiting the
    cursor executes it.
    """

    def __init__(
        self,
        operation: str,
        params: Mapping[str, Any],
        execute: Execute,
        schema: Schema,
        *,
        ready: Ready | None = None,
        capabilities: Iterable[str] = (),
        compiler: OperatorCompiler | None = None,
    ) -> None:
        self.operation = operation
        self.has_more = True
        self._params: dict[str, Any] = dict(params)
        self._execute = execute
        self._schema = schema
        self._ready = ready
        self._capabilities = frozenset(capabilities)
        self._compiler = compiler or OperatorCompiler(schema)
        self._last_key: dict[str, WireValue] | None = None

    def __repr__(self) -> str:
        return f"QueryCursor({self.operation!r}, table={self._params.get('TableName')!r})"

    def __await__(self) -> Generator[Any, None, QueryResult]:
        return self.exec().__await__()

    @property
    def params(self) -> dict[str, Any]:
        return self._params

    @property
    def last_key(self) -> dict[str, WireValue] | None:
        return self._last_key

    @property
    def token(self) -> str | None:
        if not self._last_key:
            return None
        return encode_continuation(self._last_key)

    def _require(self, capability: str) -> None:
        if capability not in self._capabilities:
            raise StateError(f"{capability} is not supported for {self.operation}")

    def select(self, *fields: str) -> QueryCursor:
        self._require(SELECT)
        for name in fields:
            self._schema.field_type(name)

        if self.operation == "get_item":
            if fields:
                self._params["AttributesToGet"] = list(fields)
            else:
                self._params.pop("AttributesToGet", None)
            return self

        if fields:
            self._params["AttributesToGet"] = list(fields)
            self._params["Select"] = "SPECIFIC_ATTRIBUTES"
        else:
            self._params.pop("AttributesToGet", None)
            self._params["Select"] = "ALL_ATTRIBUTES"
        return self

    def count(self) -> QueryCursor:
        self._require(COUNT)
        self._params.pop("AttributesToGet", None)
        self._params["Select"] = "COUNT"
        return self

    def consistent_read(self, enabled: bool = True) -> QueryCursor:
        self._require(CONSISTENT_READ)
        self._params["ConsistentRead"] = bool(enabled)
        return self

    def return_consumed_capacity(self, mode: bool | str = True) -> QueryCursor:
        self._require(CONSUMED_CAPACITY)
        self._params["ReturnConsumedCapacity"] = _wire_flag(mode, on="TOTAL")
        return self

    def return_item_collection_metrics(self, mode: bool | str = True) -> QueryCursor:
        self._require(COLLECTION_METRICS)
        self._params["ReturnItemCollectionMetrics"] = _wire_flag(mode, on="SIZE")
        return self

    def return_values(self, mode: bool | str = True) -> QueryCursor:
        self._require(RETURN_VALUES)
        self._params["ReturnValues"] = _wire_flag(mode, on="ALL_NEW")
        return self

    def index(self, name: str) -> QueryCursor:
        self._require(INDEX)
        validate_index_name(name)
        self._params["IndexName"] = name
        return self

    def scan_forward(self, enabled: bool = True) -> QueryCursor:
        self._require(SCAN_FORWARD)
        self._params["ScanIndexForward"] = bool(enabled)
        return self

    def limit(self, count: int) -> QueryCursor:
        self._require(LIMIT)
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError("limit must be a positive integer")
        self._params["Limit"] = count
        return self

    def expected(self, conditions: Mapping[str, Any]) -> QueryCursor:
        self._require(EXPECTED)
        compiled = self._compiler.compile_expectations(conditions)
        if compiled:
            self._params["Expected"] = compiled
        else:
            self._params.pop("Expected", None)
        return self

    def start_from(self, token: str) -> QueryCursor:
        self._require(START_FROM)
        self._params["ExclusiveStartKey"] = decode_continuation(token)
        return self

    async def exec(self) -> QueryResult:
        if self._ready is not None:
            await self._ready()

        response = await self._execute(dict(self._params))

        last = response.get("LastEvaluatedKey") or None
        self._last_key = last
        self.has_more = last is not None

        item = response.get("Item")
        attributes = response.get("Attributes")
        return QueryResult(
            item=self._schema.decode(item) if item is not None else None,
            items=[self._schema.decode(raw) for raw in response.get("Items", [])],
            count=response.get("Count"),
            scanned_count=response.get("ScannedCount"),
            last_key=self._decode_key(last),
            attributes=self._schema.decode(attributes) if attributes else None,
            consumed_capacity=response.get("ConsumedCapacity"),
            response=response,
        )

    async def next(self) -> QueryResult:
        if not self.has_more or self._last_key is None:
            raise StateError(
                "there is no more data to retrieve, last execution did not yield a LastEvaluatedKey"
            )
        self._params["ExclusiveStartKey"] = self._last_key
        logger.debug("%s on %s: fetching next page", self.operation, self._params.get("TableName"))
        return await self.exec()

    async def iterate(self) -> AsyncIterator[dict[str, Any]]:
        result = await self.exec()
        while True:
            for item in result.items:
                yield item
            if not self.has_more:
                return
            result = await self.next()

    def _decode_key(self, key: Mapping[str, WireValue] | None) -> dict[str, Any] | None:
        if key is None:
            return None
        out: dict[str, Any] = {}
        for name, value in key.items():
            if self._schema.has_field(name):
                out[name] = self._schema.field_type(name).decode(value)
        return out


def _single(value: Any) -> tuple[str, Any]:
    if not isinstance(value, Mapping) or len(value) != 1:
        raise ValidationError("attribute value must be a single-key map")
    ((kind, inner),) = value.items()
    return str(kind), inner


def _strings(kind: str, value: Any) -> Any:
    if kind in {"S", "N"} and isinstance(value, str):
        return value
    if kind in {"SS", "NS"} and isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ValidationError(f"invalid {kind} value in continuation key")


def _key_to_json(value: WireValue) -> dict[str, Any]:
    kind, inner = _single(value)
    if kind == "B":
        return {"B": base64.b64encode(bytes(inner)).decode("ascii")}
    if kind == "BS":
        return {"BS": [base64.b64encode(bytes(v)).decode("ascii") for v in inner]}
    return {kind: _strings(kind, inner)}


def _key_from_json(value: Any) -> WireValue:
    kind, inner = _single(value)
    if kind == "B":
        return {"B": base64.b64decode(str(inner))}
    if kind == "BS":
        return {"BS": [base64.b64decode(str(v)) for v in inner]}
    return {kind: _strings(kind, inner)}


def encode_continuation(last_key: Mapping[str, WireValue]) -> str:
    payload = {str(name): _key_to_json(last_key[name]) for name in sorted(last_key)}
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_continuation(token: str) -> dict[str, WireValue]:
    raw = str(token or "").strip()
    if not raw:
        raise ValidationError("continuation token is empty")
    try:
        parsed = json.loads(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode("utf-8"))
    except ValueError as err:
        raise ValidationError("invalid continuation token") from err
    if not isinstance(parsed, dict) or not parsed:
        raise ValidationError("continuation token must decode to a key map")
    return {str(name): _key_from_json(value) for name, value in parsed.items()}
