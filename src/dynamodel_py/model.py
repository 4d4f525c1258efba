from __future__ import annotations

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from .errors import ValidationError
from .operators import OperatorCompiler
from .query import (
    QUERY_CAPABILITIES,
    READ_CAPABILITIES,
    SCAN_CAPABILITIES,
    WRITE_CAPABILITIES,
    Execute,
    QueryCursor,
)
from .readiness import (
    DEFAULT_POLL_INTERVAL,
    Sleep,
    TableRegistry,
    TableState,
    default_registry,
    wait_for_active,
)
from .runtime import DynamoDBTransport, get_dynamodb_client
from .schema import Schema, Throughput, build_create_table_request
from .validation import validate_table_name


class Model:
    """Typed handle on one table.

    Item operations and reads return a :class:`QueryCursor`; awaiting it runs
    the request once the table is known to be active. Expressions are
    compiled, and errors in them raised, when the cursor is built, before
    anything is sent. Extra keyword arguments are merged into the request
    as-is.

    Models that share a :class:`TableRegistry` share one readiness check per
    table name. Without an explicit ``registry`` every model uses the
    process-wide ``default_registry``.
    """

    def __init__(
        self,
        table_name: str,
        schema: Schema | Mapping[str, Any],
        *,
        client: Any | None = None,
        registry: TableRegistry | None = None,
        throughput: Throughput | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        consistent_read: bool = False,
        sleep: Sleep = asyncio.sleep,
        **client_options: Any,
    ) -> None:
        if not table_name:
            raise ValidationError("table_name is required")
        if schema is None:
            raise ValidationError("schema is required")
        validate_table_name(table_name)

        self.table_name = table_name
        self.schema = schema if isinstance(schema, Schema) else Schema(schema)
        self.compiler = OperatorCompiler(self.schema)
        self.registry = registry if registry is not None else default_registry
        self.throughput = throughput or Throughput()
        self.poll_interval = poll_interval
        self.consistent_read = consistent_read
        self._sleep = sleep
        self._transport = DynamoDBTransport(
            client if client is not None else get_dynamodb_client(**client_options)
        )

    def __repr__(self) -> str:
        return f"Model({self.table_name!r}, {self.schema!r})"

    @property
    def client(self) -> Any:
        return self._transport.client

    @property
    def table_state(self) -> TableState:
        return self.registry.state(self.table_name)

    def use_client(self, client: Any) -> None:
        self._transport = DynamoDBTransport(client)

    def _request(self, params: Mapping[str, Any], **fields: Any) -> dict[str, Any]:
        req = dict(params)
        req.update(fields)
        req["TableName"] = self.table_name
        return req

    def _cursor(
        self,
        operation: str,
        req: Mapping[str, Any],
        capabilities: Iterable[str] = (),
        *,
        gated: bool = True,
        execute: Execute | None = None,
    ) -> QueryCursor:
        return QueryCursor(
            operation,
            req,
            execute if execute is not None else self._transport.bind(operation),
            self.schema,
            ready=self.ensure_active_table if gated else None,
            capabilities=capabilities,
            compiler=self.compiler,
        )

    def _apply_expected(self, req: dict[str, Any], expected: Mapping[str, Any] | None) -> None:
        compiled = self.compiler.compile_expectations(expected)
        if compiled:
            req["Expected"] = compiled

    def get_item(self, key: Mapping[str, Any], **params: Any) -> QueryCursor:
        if key is None:
            raise ValidationError("key is required")
        req = self._request(params, Key=self.schema.key_of(key))
        if self.consistent_read:
            req.setdefault("ConsistentRead", True)
        return self._cursor("get_item", req, READ_CAPABILITIES)

    def put_item(
        self,
        item: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
        **params: Any,
    ) -> QueryCursor:
        if item is None:
            raise ValidationError("item is required")
        self.schema.key_of(item)
        req = self._request(params, Item=self.schema.encode(item))
        self._apply_expected(req, expected)
        return self._cursor("put_item", req, WRITE_CAPABILITIES)

    def update_item(
        self,
        key: Mapping[str, Any],
        updates: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
        **params: Any,
    ) -> QueryCursor:
        if key is None:
            raise ValidationError("key is required")
        if updates is None:
            raise ValidationError("updates is required")
        req = self._request(
            params,
            Key=self.schema.key_of(key),
            AttributeUpdates=self.compiler.compile_updates(updates),
        )
        self._apply_expected(req, expected)
        return self._cursor("update_item", req, WRITE_CAPABILITIES)

    def delete_item(
        self,
        key: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
        **params: Any,
    ) -> QueryCursor:
        if key is None:
            raise ValidationError("key is required")
        req = self._request(params, Key=self.schema.key_of(key))
        self._apply_expected(req, expected)
        return self._cursor("delete_item", req, WRITE_CAPABILITIES)

    def query(self, key_conditions: Mapping[str, Any], **params: Any) -> QueryCursor:
        if key_conditions is None:
            raise ValidationError("key is required")
        req = self._request(params, KeyConditions=self.compiler.compile_conditions(key_conditions))
        if self.consistent_read:
            req.setdefault("ConsistentRead", True)
        return self._cursor("query", req, QUERY_CAPABILITIES)

    def scan(self, filter: Mapping[str, Any] | None = None, **params: Any) -> QueryCursor:
        req = self._request(params)
        if filter:
            req["ScanFilter"] = self.compiler.compile_conditions(filter)
        return self._cursor("scan", req, SCAN_CAPABILITIES)

    def describe_table(self, **params: Any) -> QueryCursor:
        return self._cursor("describe_table", self._request(params), gated=False)

    def create_table(self, throughput: Throughput | None = None, **params: Any) -> QueryCursor:
        req = dict(params)
        req.update(
            build_create_table_request(self.table_name, self.schema, throughput=throughput or self.throughput)
        )
        if "ProvisionedThroughput" in params:
            req["ProvisionedThroughput"] = params["ProvisionedThroughput"]
        return self._cursor("create_table", req, gated=False)

    def update_table(self, throughput: Throughput | None = None, **params: Any) -> QueryCursor:
        req = self._request(params)
        if "ProvisionedThroughput" not in params:
            req["ProvisionedThroughput"] = (throughput or self.throughput).to_wire()
        return self._cursor("update_table", req, gated=False)

    def delete_table(self, **params: Any) -> QueryCursor:
        return self._cursor("delete_table", self._request(params), gated=False)

    async def _describe(self) -> dict[str, Any]:
        return await self._transport.call("describe_table", {"TableName": self.table_name})

    async def _create(self) -> dict[str, Any]:
        req = build_create_table_request(self.table_name, self.schema, throughput=self.throughput)
        return await self._transport.call("create_table", req)

    def wait_for_active_table(self, poll_interval: float | None = None) -> QueryCursor:
        """Describe, create when missing and poll until the table is ``ACTIVE``.

        Runs outside the readiness gate; the final description is in
        ``result.response["Table"]``.
        """
        interval = self.poll_interval if poll_interval is None else poll_interval

        async def execute(params: Mapping[str, Any]) -> dict[str, Any]:
            description = await wait_for_active(
                params["TableName"],
                self._describe,
                self._create,
                poll_interval=interval,
                sleep=self._sleep,
            )
            return {"Table": description}

        return self._cursor("wait_for_active_table", {"TableName": self.table_name}, gated=False, execute=execute)

    async def ensure_active_table(self) -> None:
        await self.registry.ensure_active(
            self.table_name,
            self._describe,
            self._create,
            poll_interval=self.poll_interval,
            sleep=self._sleep,
        )
