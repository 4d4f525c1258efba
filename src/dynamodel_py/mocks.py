from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeAlias
from unittest.mock import ANY

from botocore.exceptions import ClientError

OPERATIONS = frozenset(
    {
        "put_item",
        "get_item",
        "update_item",
        "delete_item",
        "query",
        "scan",
        "create_table",
        "update_table",
        "delete_table",
        "describe_table",
    }
)

RequestCheck: TypeAlias = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]


def client_error(code: str, message: str = "", *, operation: str = "DescribeTable") -> ClientError:
    """Build the botocore error a real client raises for ``code``."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def _first(mismatches: Iterable[str | None]) -> str | None:
    return next((m for m in mismatches if m is not None), None)


def _mismatch(expected: Any, actual: Any, path: str) -> str | None:
    """Describe the first place ``actual`` differs from ``expected``.

    Mappings match on the expected keys only; lists match element by element.
    ``ANY`` matches anything at any depth.
    """
    match expected:
        case Mapping():
            if not isinstance(actual, Mapping):
                return f"{path}: expected dict, got {type(actual).__name__}"
            missing = next((key for key in expected if key not in actual), None)
            if missing is not None:
                return f"{path}: missing key {missing!r}"
            return _first(_mismatch(value, actual[key], f"{path}.{key}") for key, value in expected.items())
        case list():
            if not isinstance(actual, list):
                return f"{path}: expected list, got {type(actual).__name__}"
            if len(actual) != len(expected):
                return f"{path}: expected {len(expected)} items, got {len(actual)}"
            return _first(_mismatch(e, a, f"{path}[{i}]") for i, (e, a) in enumerate(zip(expected, actual)))
        case _:
            return None if expected == actual else f"{path}: expected {expected!r}, got {actual!r}"


@dataclass(frozen=True)
class Expectation:
    operation: str
    request: RequestCheck | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None

    def answer(self, operation: str, request: dict[str, Any]) -> dict[str, Any]:
        if operation != self.operation:
            raise AssertionError(f"expected {self.operation}, got {operation}")

        if callable(self.request):
            self.request(request)
        elif self.request is not None:
            problem = _mismatch(self.request, request, operation)
            if problem is not None:
                raise AssertionError(problem)

        if self.error is not None:
            raise self.error
        return dict(self.response or {})


class FakeDynamoDBClient:
    """Scripted stand-in for a boto3 DynamoDB client.

    Expectations are answered strictly in order. Any name in ``OPERATIONS``
    is callable with keyword arguments, like the real client; calls may come
    from worker threads.
    """

    def __init__(self) -> None:
        self._pending: deque[Expectation] = deque()
        self._lock = threading.Lock()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Callable[..., dict[str, Any]]:
        if name not in OPERATIONS:
            raise AttributeError(name)

        def call(**request: Any) -> dict[str, Any]:
            return self._answer(name, request)

        call.__name__ = name
        return call

    def expect(
        self,
        operation: str,
        request: RequestCheck | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        if operation not in OPERATIONS:
            raise ValueError(f"unknown dynamodb operation: {operation}")
        self._pending.append(Expectation(operation, request, response, error))

    def assert_no_pending(self) -> None:
        if self._pending:
            raise AssertionError(f"pending expected calls: {list(self._pending)!r}")

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _answer(self, operation: str, request: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            self.calls.append((operation, dict(request)))
            if not self._pending:
                raise AssertionError(f"unexpected call: {operation}")
            expectation = self._pending.popleft()
        return expectation.answer(operation, request)


__all__ = ["ANY", "OPERATIONS", "Expectation", "FakeDynamoDBClient", "client_error"]
