from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any, cast, TypeAlias

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from .aws_errors import map_client_error

logger = logging.getLogger(__name__)

WireCall: TypeAlias = Callable[[Mapping[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class AwsCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "standard"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, service: str, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            ok = False
            try:
                out = attr(*args, **kwargs)
                ok = True
                return out
            finally:
                self._on_call(
                    AwsCallMetric(
                        service=self._service,
                        operation=name,
                        seconds=time.monotonic() - start,
                        ok=ok,
                    )
                )

        return wrapped


def instrument_boto3_client(
    client: Any,
    *,
    service: str,
    on_call: Callable[[AwsCallMetric], None],
) -> Any:
    return _InstrumentedClient(client, service, on_call)


_clients: dict[tuple[str | None, str | None], Any] = {}


def get_dynamodb_client(
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
    config: Config | None = None,
    session: Any | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = None,
    **client_options: Any,
) -> Any:
    """Return a DynamoDB client, reusing one per (region, endpoint).

    ``AWS_REGION`` and ``DYNAMODB_ENDPOINT`` fill in whatever is not passed.
    Clients built with an explicit config or extra options are not cached.
    """
    region = region or os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")
    endpoint_url = endpoint_url or os.environ.get("DYNAMODB_ENDPOINT")
    key = (region, endpoint_url)
    cacheable = config is None and not client_options

    if cacheable and key in _clients:
        return _clients[key]

    sess = session or boto3.session.Session(region_name=region)
    client = cast(Any, sess).client(
        "dynamodb",
        region_name=region,
        endpoint_url=endpoint_url,
        config=config,
        **client_options,
    )
    if metrics is not None:
        client = instrument_boto3_client(client, service="dynamodb", on_call=metrics)

    if cacheable:
        _clients[key] = client
    return client


def _reset_clients_for_tests() -> None:
    _clients.clear()


class DynamoDBTransport:
    """Async bridge over a blocking boto3-style DynamoDB client.

    Each call runs in a worker thread; botocore errors come back as the
    package's own error types.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        return self._client

    async def call(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
        method = getattr(self._client, operation)
        logger.debug("dynamodb %s on %s", operation, params.get("TableName"))
        try:
            response = await asyncio.to_thread(method, **params)
        except ClientError as err:
            raise map_client_error(err) from err
        return dict(response or {})

    def bind(self, operation: str) -> WireCall:
        return partial(self.call, operation)
