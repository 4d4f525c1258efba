from __future__ import annotations

import asyncio
import threading
from decimal import Decimal
from typing import Any

import pytest

from dynamodel_py import (
    AwsError,
    ConditionFailedError,
    FieldError,
    Model,
    NotFoundError,
    Schema,
    TableRegistry,
    TableState,
    Throughput,
    ValidationError,
)
from dynamodel_py.mocks import ANY, FakeDynamoDBClient, client_error
from dynamodel_py.readiness import _reset_default_registry_for_tests, default_registry
from dynamodel_py.testkit import expect_active_table, expect_created_table, no_sleep
from dynamodel_py.validation import NameValidationError

FIELDS: dict[str, Any] = {
    "id": {"type": "text", "key": True},
    "count": {"type": "number", "default": 0},
    "name": "text",
}


class InMemoryDynamoDB:
    """Just enough of the legacy DynamoDB API to run a model end to end."""

    def __init__(self, *, creating_polls: int = 1) -> None:
        self.tables: dict[str, dict[str, Any]] = {}
        self.creating_polls = creating_polls
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def _table(self, name: str, operation: str) -> dict[str, Any]:
        table = self.tables.get(name)
        if table is None:
            raise client_error("ResourceNotFoundException", f"table not found: {name}", operation=operation)
        return table

    def _key(self, table: dict[str, Any], key: dict[str, Any]) -> tuple[Any, ...]:
        return tuple(key[name]["S"] for name in table["keys"])

    def _check(self, item: dict[str, Any] | None, expected: dict[str, Any] | None) -> None:
        for name, condition in (expected or {}).items():
            current = (item or {}).get(name)
            if "Exists" in condition and condition["Exists"] != (current is not None):
                raise client_error("ConditionalCheckFailedException", "condition failed", operation="PutItem")
            if "Value" in condition and condition["Value"] != current:
                raise client_error("ConditionalCheckFailedException", "condition failed", operation="PutItem")

    def describe_table(self, TableName: str) -> dict[str, Any]:
        self.calls.append("describe_table")
        with self._lock:
            table = self._table(TableName, "DescribeTable")
            if table["polls"] > 0:
                table["polls"] -= 1
                return {"Table": {"TableName": TableName, "TableStatus": "CREATING"}}
            return {"Table": {"TableName": TableName, "TableStatus": "ACTIVE"}}

    def create_table(self, TableName: str, KeySchema: list[dict[str, str]], **_: Any) -> dict[str, Any]:
        self.calls.append("create_table")
        with self._lock:
            self.tables[TableName] = {
                "keys": [k["AttributeName"] for k in KeySchema],
                "items": {},
                "polls": self.creating_polls,
            }
        return {"TableDescription": {"TableName": TableName, "TableStatus": "CREATING"}}

    def put_item(self, TableName: str, Item: dict[str, Any], Expected: Any = None, **_: Any) -> dict[str, Any]:
        self.calls.append("put_item")
        with self._lock:
            table = self._table(TableName, "PutItem")
            key = self._key(table, Item)
            self._check(table["items"].get(key), Expected)
            table["items"][key] = dict(Item)
        return {}

    def get_item(self, TableName: str, Key: dict[str, Any], **_: Any) -> dict[str, Any]:
        self.calls.append("get_item")
        with self._lock:
            table = self._table(TableName, "GetItem")
            item = table["items"].get(self._key(table, Key))
        return {"Item": dict(item)} if item is not None else {}

    def update_item(
        self,
        TableName: str,
        Key: dict[str, Any],
        AttributeUpdates: dict[str, Any],
        Expected: Any = None,
        ReturnValues: str = "NONE",
        **_: Any,
    ) -> dict[str, Any]:
        self.calls.append("update_item")
        with self._lock:
            table = self._table(TableName, "UpdateItem")
            key = self._key(table, Key)
            current = table["items"].get(key)
            self._check(current, Expected)
            item = dict(current or Key)
            for name, update in AttributeUpdates.items():
                action = update["Action"]
                if action == "PUT":
                    item[name] = update["Value"]
                elif action == "DELETE":
                    item.pop(name, None)
                elif action == "ADD":
                    base = Decimal(item.get(name, {"N": "0"})["N"])
                    item[name] = {"N": str(base + Decimal(update["Value"]["N"]))}
            table["items"][key] = item
        return {"Attributes": dict(item)} if ReturnValues == "ALL_NEW" else {}

    def delete_item(self, TableName: str, Key: dict[str, Any], **_: Any) -> dict[str, Any]:
        self.calls.append("delete_item")
        with self._lock:
            table = self._table(TableName, "DeleteItem")
            table["items"].pop(self._key(table, Key), None)
        return {}

    def scan(self, TableName: str, Limit: int | None = None, ExclusiveStartKey: Any = None, **_: Any) -> dict:
        self.calls.append("scan")
        with self._lock:
            table = self._table(TableName, "Scan")
            keys = sorted(table["items"])
            if ExclusiveStartKey is not None:
                start = self._key(table, ExclusiveStartKey)
                keys = [k for k in keys if k > start]
            page = keys[:Limit] if Limit else keys
            items = [dict(table["items"][k]) for k in page]
        response: dict[str, Any] = {"Items": items, "Count": len(items), "ScannedCount": len(items)}
        if Limit and len(keys) > Limit:
            response["LastEvaluatedKey"] = {name: {"S": page[-1][i]} for i, name in enumerate(table["keys"])}
        return response


@pytest.fixture(autouse=True)
def _fresh_default_registry() -> None:
    _reset_default_registry_for_tests()


def _model(client: Any, **kwargs: Any) -> Model:
    return Model("things", FIELDS, client=client, sleep=no_sleep, **kwargs)


def test_model_construction_validates_inputs() -> None:
    client = FakeDynamoDBClient()
    with pytest.raises(ValidationError, match="table_name is required"):
        Model("", FIELDS, client=client)
    with pytest.raises(ValidationError, match="schema is required"):
        Model("things", None, client=client)  # type: ignore[arg-type]
    with pytest.raises(NameValidationError):
        Model("a b", FIELDS, client=client)

    model = _model(client)
    assert isinstance(model.schema, Schema)
    assert model.table_state is TableState.UNKNOWN
    assert model.client is client


def test_item_requests_are_built_before_sending() -> None:
    model = _model(FakeDynamoDBClient())

    get = model.get_item({"id": "a", "name": "ignored"}, ReturnConsumedCapacity="TOTAL")
    assert get.params == {"ReturnConsumedCapacity": "TOTAL", "Key": {"id": {"S": "a"}}, "TableName": "things"}

    put = model.put_item({"id": "a", "count": 0, "extra": 1}, expected={"id": {"$exists": False}})
    assert put.params == {
        "Item": {"id": {"S": "a"}, "count": {"N": "0"}},
        "Expected": {"id": {"Exists": False}},
        "TableName": "things",
    }

    update = model.update_item({"id": "a"}, {"$inc": {"count": 2}, "name": "x"})
    assert update.params["AttributeUpdates"] == {
        "count": {"Action": "ADD", "Value": {"N": "2"}},
        "name": {"Action": "PUT", "Value": {"S": "x"}},
    }
    assert "Expected" not in update.params

    delete = model.delete_item({"id": "a"}, expected={"count": 3})
    assert delete.params["Expected"] == {"count": {"Value": {"N": "3"}}}

    query = model.query({"id": "a"}, Limit=3)
    assert query.params["KeyConditions"] == {"id": {"AttributeValueList": [{"S": "a"}], "ComparisonOperator": "EQ"}}
    assert query.params["Limit"] == 3

    scan = model.scan({"count": {"$gt": 1}})
    assert scan.params["ScanFilter"] == {"count": {"AttributeValueList": [{"N": "1"}], "ComparisonOperator": "GT"}}
    assert "ScanFilter" not in model.scan().params


def test_custom_params_cannot_retarget_the_table() -> None:
    model = _model(FakeDynamoDBClient())
    assert model.get_item({"id": "a"}, TableName="others").params["TableName"] == "things"


def test_consistent_read_option_applies_to_reads() -> None:
    model = _model(FakeDynamoDBClient(), consistent_read=True)
    assert model.get_item({"id": "a"}).params["ConsistentRead"] is True
    assert model.query({"id": "a"}).params["ConsistentRead"] is True
    assert model.get_item({"id": "a"}, ConsistentRead=False).params["ConsistentRead"] is False


def test_invalid_expressions_fail_without_sending() -> None:
    client = FakeDynamoDBClient()
    model = _model(client)

    with pytest.raises(ValidationError, match="key field is required: id"):
        model.get_item({"name": "x"})
    with pytest.raises(ValidationError, match="key field is required: id"):
        model.put_item({"name": "x"})
    with pytest.raises(FieldError):
        model.update_item({"id": "a"}, {"nope": 1})
    with pytest.raises(FieldError):
        model.query({"nope": 1})
    with pytest.raises(ValidationError, match="key is required"):
        model.delete_item(None)  # type: ignore[arg-type]

    assert client.calls == []


@pytest.mark.asyncio
async def test_item_operations_wait_for_active_table() -> None:
    client = FakeDynamoDBClient()
    expect_active_table(client, "things")
    client.expect(
        "get_item",
        {"TableName": "things", "Key": {"id": {"S": "a"}}},
        response={"Item": {"id": {"S": "a"}, "count": {"N": "3"}}},
    )
    client.expect("get_item", {"Key": {"id": {"S": "b"}}}, response={})
    model = _model(client)

    first = await model.get_item({"id": "a"})
    missing = await model.get_item({"id": "b"})

    assert first.item == {"id": "a", "count": 3, "name": None}
    assert missing.item is None
    assert model.table_state is TableState.ACTIVE
    assert client.count("describe_table") == 1
    client.assert_no_pending()


@pytest.mark.asyncio
async def test_missing_table_is_created_with_default_throughput() -> None:
    client = FakeDynamoDBClient()
    expect_created_table(
        client,
        "things",
        statuses=("CREATING", "ACTIVE"),
        create_request={
            "TableName": "things",
            "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}],
            "ProvisionedThroughput": {"ReadCapacityUnits": 10, "WriteCapacityUnits": 5},
        },
    )
    client.expect("put_item", {"Item": ANY})

    await _model(client).put_item({"id": "a"})

    client.assert_no_pending()


@pytest.mark.asyncio
async def test_models_sharing_a_registry_share_readiness() -> None:
    client = FakeDynamoDBClient()
    expect_active_table(client, "things")
    client.expect("get_item", response={})
    client.expect("get_item", response={})
    registry = TableRegistry()

    first = _model(client, registry=registry)
    second = _model(client, registry=registry)
    await asyncio.gather(first.get_item({"id": "a"}).exec(), second.get_item({"id": "b"}).exec())

    assert client.count("describe_table") == 1
    assert second.table_state is TableState.ACTIVE


@pytest.mark.asyncio
async def test_models_without_a_registry_share_the_default_one() -> None:
    client = FakeDynamoDBClient()
    expect_created_table(client, "things")
    client.expect("get_item", response={})
    client.expect("get_item", response={})

    first = _model(client)
    second = _model(client)
    await asyncio.gather(first.get_item({"id": "a"}).exec(), second.get_item({"id": "b"}).exec())

    assert first.registry is second.registry is default_registry
    assert client.count("describe_table") == 2
    assert client.count("create_table") == 1
    assert first.table_state is second.table_state is TableState.ACTIVE
    client.assert_no_pending()


@pytest.mark.asyncio
async def test_readiness_failure_is_reported_to_operations() -> None:
    client = FakeDynamoDBClient()
    client.expect("describe_table", error=client_error("AccessDeniedException", "denied"))
    model = _model(client)

    with pytest.raises(AwsError, match="AccessDeniedException: denied"):
        await model.get_item({"id": "a"})
    with pytest.raises(AwsError):
        await model.scan()
    assert model.table_state is TableState.FAILED
    assert client.count("describe_table") == 1


@pytest.mark.asyncio
async def test_table_admin_operations_are_not_gated() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "create_table",
        {"TableName": "things", "ProvisionedThroughput": {"ReadCapacityUnits": 10, "WriteCapacityUnits": 5}},
        response={"TableDescription": {"TableStatus": "CREATING"}},
    )
    client.expect(
        "update_table",
        {"TableName": "things", "ProvisionedThroughput": {"ReadCapacityUnits": 20, "WriteCapacityUnits": 10}},
    )
    client.expect("describe_table", {"TableName": "things"}, response={"Table": {"TableStatus": "ACTIVE"}})
    client.expect("delete_table", {"TableName": "things"}, error=client_error("ResourceNotFoundException"))
    model = _model(client)

    created = await model.create_table()
    await model.update_table(Throughput(read_capacity=20, write_capacity=10))
    described = await model.describe_table()

    assert created.response["TableDescription"]["TableStatus"] == "CREATING"
    assert described.response["Table"]["TableStatus"] == "ACTIVE"
    with pytest.raises(NotFoundError):
        await model.delete_table()
    assert model.table_state is TableState.UNKNOWN
    client.assert_no_pending()


def test_create_table_params_can_override_throughput() -> None:
    model = _model(FakeDynamoDBClient(), throughput=Throughput(read_capacity=1, write_capacity=1))
    assert model.create_table().params["ProvisionedThroughput"] == {"ReadCapacityUnits": 1, "WriteCapacityUnits": 1}

    custom = {"ReadCapacityUnits": 7, "WriteCapacityUnits": 8}
    assert model.create_table(ProvisionedThroughput=custom).params["ProvisionedThroughput"] == custom


@pytest.mark.asyncio
async def test_wait_for_active_table_returns_a_cursor_with_the_description() -> None:
    client = FakeDynamoDBClient()
    expect_created_table(client, "things", statuses=("CREATING", "ACTIVE"))
    model = _model(client, registry=TableRegistry())

    cursor = model.wait_for_active_table(poll_interval=0)
    assert cursor.operation == "wait_for_active_table"
    assert cursor.params == {"TableName": "things"}

    result = await cursor
    assert result.response["Table"] == {"TableName": "things", "TableStatus": "ACTIVE"}
    assert result.item is None
    assert model.table_state is TableState.UNKNOWN
    client.assert_no_pending()


@pytest.mark.asyncio
async def test_end_to_end_against_in_memory_table() -> None:
    db = InMemoryDynamoDB(creating_polls=2)
    model = _model(db)

    await model.put_item({"id": "a", "count": 1, "name": "first"})
    assert (await model.get_item({"id": "a"})).item == {"id": "a", "count": 1, "name": "first"}

    await model.update_item({"id": "a"}, {"$inc": {"count": 5}})
    assert (await model.get_item({"id": "a"})).item == {"id": "a", "count": 6, "name": "first"}

    updated = await model.update_item({"id": "a"}, {"$unset": {"name": True}}).return_values()
    assert updated.attributes == {"id": "a", "count": 6, "name": None}

    with pytest.raises(ConditionFailedError):
        await model.put_item({"id": "a"}, expected={"id": {"$exists": False}})

    await model.delete_item({"id": "a"})
    assert (await model.get_item({"id": "a"})).item is None

    assert db.calls[:5] == ["describe_table", "create_table", "describe_table", "describe_table", "describe_table"]
    assert db.calls.count("create_table") == 1


@pytest.mark.asyncio
async def test_scan_pages_through_in_memory_table() -> None:
    db = InMemoryDynamoDB(creating_polls=0)
    model = _model(db)
    for name in ["a", "b", "c"]:
        await model.put_item({"id": name})

    cursor = model.scan().limit(2)
    ids = [item["id"] async for item in cursor.iterate()]

    assert ids == ["a", "b", "c"]
    assert [item["count"] for item in (await model.scan()).items] == [0, 0, 0]
