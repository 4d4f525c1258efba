from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from typing import Any, TypeAlias

from .aws_errors import is_not_found
from .errors import ReadinessCancelledError, StateError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 3.0

AdminCall: TypeAlias = Callable[[], Awaitable[Mapping[str, Any]]]
Sleep: TypeAlias = Callable[[float], Awaitable[Any]]


class TableState(StrEnum):
    UNKNOWN = "UNKNOWN"
    POLLING = "POLLING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


async def wait_for_active(
    table_name: str,
    describe: AdminCall,
    create: AdminCall,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    sleep: Sleep = asyncio.sleep,
) -> dict[str, Any]:
    """Describe the table, create it if missing, then poll until ``ACTIVE``.

    Returns the last table description. There is no deadline: the loop ends
    when the table is active, when describe fails, or when the awaiting task
    is cancelled.
    """
    try:
        response = await describe()
    except Exception as err:
        if not is_not_found(err):
            raise
        logger.info("table %s does not exist, creating it", table_name)
        created = await create()
        description = dict(created.get("TableDescription") or {})
    else:
        description = dict(response.get("Table") or {})

    while str(description.get("TableStatus", "")) != "ACTIVE":
        logger.debug(
            "table %s is %s, polling again in %ss",
            table_name,
            description.get("TableStatus"),
            poll_interval,
        )
        await sleep(poll_interval)
        response = await describe()
        description = dict(response.get("Table") or {})

    return description


class TableReadiness:
    """Single-flight readiness gate for one table.

    The first caller starts one background sequence (describe, create on
    not-found, then poll until ``ACTIVE``). Callers arriving while it runs
    wait on the same outcome; callers arriving after it settled get the cached
    outcome. A settled gate never polls again.
    """

    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        self._state = TableState.UNKNOWN
        self._error: BaseException | None = None
        self._outcome: asyncio.Future[None] | None = None
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:
        return f"TableReadiness({self.table_name!r}, state={self._state})"

    @property
    def state(self) -> TableState:
        return self._state

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def settled(self) -> bool:
        return self._state in {TableState.ACTIVE, TableState.FAILED}

    async def ensure_active(
        self,
        describe: AdminCall,
        create: AdminCall,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if self._state is TableState.UNKNOWN:
            loop = asyncio.get_running_loop()
            self._outcome = outcome = loop.create_future()
            self._state = TableState.POLLING
            self._task = loop.create_task(
                self._run(describe, create, poll_interval, sleep),
                name=f"table-readiness:{self.table_name}",
            )
            self._task.add_done_callback(self._on_task_done)
        else:
            outcome = self._outcome
            if outcome is None:
                raise StateError(f"table {self.table_name} is {self._state} without a readiness outcome")

        # shielded so an abandoned wait does not cancel the shared sequence
        await asyncio.shield(outcome)

    def cancel(self) -> bool:
        if self._task is None or self._task.done():
            return False
        return self._task.cancel()

    async def wait_closed(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def _run(self, describe: AdminCall, create: AdminCall, poll_interval: float, sleep: Sleep) -> None:
        try:
            await wait_for_active(self.table_name, describe, create, poll_interval=poll_interval, sleep=sleep)
        except Exception as err:
            self._settle(err)
        else:
            self._settle(None)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            self._settle(ReadinessCancelledError(f"readiness wait cancelled: {self.table_name}"))

    def _settle(self, error: BaseException | None) -> None:
        outcome = self._outcome
        if outcome is None:
            raise StateError(f"table {self.table_name} settled before a readiness check started")
        if outcome.done():
            return

        self._error = error
        if error is None:
            self._state = TableState.ACTIVE
            outcome.set_result(None)
            logger.info("table %s is active", self.table_name)
            return

        self._state = TableState.FAILED
        outcome.set_exception(error)
        # the outcome is cached and replayed to later callers; mark it retrieved
        outcome.exception()
        logger.warning("table %s failed to become active: %s", self.table_name, error)


class TableRegistry:
    """Table name to readiness gate map shared by every model bound to it.

    Entries are created lazily and live as long as the registry.
    """

    def __init__(self) -> None:
        self._tables: dict[str, TableReadiness] = {}

    def __contains__(self, table_name: object) -> bool:
        return table_name in self._tables

    def __len__(self) -> int:
        return len(self._tables)

    def get(self, table_name: str) -> TableReadiness:
        readiness = self._tables.get(table_name)
        if readiness is None:
            readiness = TableReadiness(table_name)
            self._tables[table_name] = readiness
        return readiness

    def state(self, table_name: str) -> TableState:
        readiness = self._tables.get(table_name)
        return readiness.state if readiness is not None else TableState.UNKNOWN

    async def ensure_active(
        self,
        table_name: str,
        describe: AdminCall,
        create: AdminCall,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        await self.get(table_name).ensure_active(describe, create, poll_interval=poll_interval, sleep=sleep)

    def cancel(self, table_name: str) -> bool:
        readiness = self._tables.get(table_name)
        return readiness.cancel() if readiness is not None else False

    async def aclose(self) -> None:
        for readiness in self._tables.values():
            readiness.cancel()
        for readiness in self._tables.values():
            await readiness.wait_closed()


default_registry = TableRegistry()
"""Registry used by models constructed without an explicit ``registry``."""


def _reset_default_registry_for_tests() -> None:
    default_registry._tables.clear()
