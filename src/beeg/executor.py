"""Concurrent check execution across nodes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from enum import Enum
from typing import AsyncIterator, Callable, Iterable, Sequence

from .checks import Check
from .config import Node
from .results import Outcome, Result, ResultSet, Status
from .transport import CommandTimeout, ConnectionFailed, Transport

logger = logging.getLogger(__name__)


class NodeStatus(Enum):
    """Progress of a node's probe within one run."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"


# Type alias for status callback
StatusCallback = Callable[[Node, NodeStatus], None]  # (node, status) -> None
TickCallback = Callable[[ResultSet], None]


class Executor:
    """Runs one check against many nodes concurrently.

    Every node is probed in its own task. A failure, hang or timeout on one
    node is turned into that node's result and never affects the others.
    """

    def __init__(
        self,
        transport: Transport,
        concurrency: int | None = None,
        timeout: float = 10.0,
        grace: float = 2.0,
        on_status: StatusCallback | None = None,
    ):
        self.transport = transport
        self.concurrency = concurrency
        self.timeout = timeout
        self.grace = grace
        self.on_status = on_status

    def _emit_status(self, node: Node, status: NodeStatus) -> None:
        if self.on_status:
            self.on_status(node, status)

    async def run(
        self, check: Check, nodes: Iterable[Node], deadline: float | None = None
    ) -> ResultSet:
        """Probe all nodes and return their results in input order.

        Nodes still running when ``deadline`` elapses are cancelled and
        reported as timed out.
        """
        nodes = list(nodes)
        if not nodes:
            return ResultSet(check.name)

        tasks = self._spawn(check, nodes)
        try:
            done, pending = await asyncio.wait(tasks, timeout=deadline)
        except asyncio.CancelledError:
            await self._cancel(tasks)
            raise
        if pending:
            logger.warning("%d node(s) still running at the overall deadline", len(pending))
            await self._cancel(pending)

        # One slot per node index, each written once.
        slots: list[Result] = []
        for node, task in zip(nodes, tasks):
            if task in done:
                slots.append(task.result())
            else:
                slots.append(
                    Result(
                        node=node,
                        status=Status.TIMEOUT,
                        detail=f"overall deadline of {deadline:g}s elapsed",
                        duration=deadline or 0.0,
                    )
                )
        return ResultSet(check.name, slots)

    async def stream(self, check: Check, nodes: Iterable[Node]) -> AsyncIterator[Result]:
        """Yield results as nodes finish, in completion order."""
        tasks = self._spawn(check, list(nodes))
        try:
            for next_done in asyncio.as_completed(tasks):
                yield await next_done
        finally:
            unfinished = [task for task in tasks if not task.done()]
            if unfinished:
                await self._cancel(unfinished)

    def _spawn(self, check: Check, nodes: Sequence[Node]) -> list[asyncio.Task]:
        semaphore = asyncio.Semaphore(self.concurrency) if self.concurrency else None
        for node in nodes:
            self._emit_status(node, NodeStatus.PENDING)
        return [asyncio.create_task(self._run_node(check, node, semaphore)) for node in nodes]

    async def _cancel(self, tasks: Iterable[asyncio.Task]) -> None:
        """Cancel node tasks and wait a bounded time for them to clean up."""
        tasks = list(tasks)
        for task in tasks:
            task.cancel()
        _, pending = await asyncio.wait(tasks, timeout=self.grace)
        if pending:
            logger.warning(
                "%d node task(s) did not stop within %gs", len(pending), self.grace
            )

    async def _run_node(
        self, check: Check, node: Node, semaphore: asyncio.Semaphore | None
    ) -> Result:
        async with semaphore or contextlib.nullcontext():
            self._emit_status(node, NodeStatus.RUNNING)
            started = time.monotonic()
            outcome = await self._probe(check, node)
            result = Result.from_outcome(node, outcome, time.monotonic() - started)
        self._emit_status(node, NodeStatus.DONE)
        return result

    async def _probe(self, check: Check, node: Node) -> Outcome:
        try:
            return await asyncio.wait_for(
                check.probe(self.transport, node, self.timeout), self.timeout
            )
        except (CommandTimeout, asyncio.TimeoutError):
            logger.info("[%s] %s timed out after %gs", node.name, check.name, self.timeout)
            return Outcome.failure(Status.TIMEOUT, f"timed out after {self.timeout:g}s")
        except ConnectionFailed as e:
            logger.info("[%s] connection failed: %s", node.name, e.cause)
            return Outcome.failure(Status.CONNECTION_FAILED, str(e.cause))
        except Exception as e:
            logger.exception("[%s] %s check raised", node.name, check.name)
            return Outcome.failure(Status.ERROR, f"{type(e).__name__}: {e}")


class LivePoller:
    """Re-runs a check on a fixed interval until stopped.

    Each tick runs the executor afresh and hands the new ResultSet to the
    callback. ``stop()`` cancels the tick in flight; its node tasks are
    joined before ``run()`` returns, so no session outlives the poller.
    """

    def __init__(
        self,
        executor: Executor,
        check: Check,
        nodes: Sequence[Node],
        interval: float = 2.0,
    ) -> None:
        self.executor = executor
        self.check = check
        self.nodes = list(nodes)
        self.interval = interval
        self.ticks = 0
        self._stop = asyncio.Event()
        self._tick: asyncio.Task | None = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        self._stop.set()
        if self._tick is not None and not self._tick.done():
            self._tick.cancel()

    async def run(self, on_tick: TickCallback) -> None:
        while not self._stop.is_set():
            self._tick = asyncio.create_task(self.executor.run(self.check, self.nodes))
            try:
                result_set = await self._tick
            except asyncio.CancelledError:
                if self._stop.is_set():
                    break
                raise
            finally:
                self._tick = None

            self.ticks += 1
            on_tick(result_set)

            try:
                await asyncio.wait_for(self._stop.wait(), self.interval)
            except asyncio.TimeoutError:
                pass
