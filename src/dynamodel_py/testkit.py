from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from .mocks import ANY, FakeDynamoDBClient, client_error


async def no_sleep(_: float) -> None:
    return None


def table_description(table_name: str, status: str = "ACTIVE") -> dict[str, Any]:
    return {"TableName": table_name, "TableStatus": status}


def expect_active_table(client: FakeDynamoDBClient, table_name: str) -> None:
    client.expect(
        "describe_table",
        {"TableName": table_name},
        response={"Table": table_description(table_name)},
    )


def expect_created_table(
    client: FakeDynamoDBClient,
    table_name: str,
    *,
    statuses: tuple[str, ...] = ("ACTIVE",),
    create_request: Mapping[str, Any] | None = None,
) -> None:
    client.expect("describe_table", {"TableName": table_name}, error=client_error("ResourceNotFoundException"))
    client.expect(
        "create_table",
        create_request or {"TableName": table_name},
        response={"TableDescription": table_description(table_name, "CREATING")},
    )
    for status in statuses:
        client.expect(
            "describe_table",
            {"TableName": table_name},
            response={"Table": table_description(table_name, status)},
        )


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "client_error",
    "expect_active_table",
    "expect_created_table",
    "no_sleep",
    "table_description",
]
