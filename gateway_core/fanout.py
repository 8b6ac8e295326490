"""
Fan-out Aggregator

Runs independent async operations concurrently and reports an outcome for
each of them, so one failing upstream call never hides the results of its
siblings.

Usage:
    from gateway_core.fanout import FanOutTask, gather_outcomes

    outcomes = await gather_outcomes([
        FanOutTask(lambda: client.get_json("/ticker/BTC"), context={"pair": "USDT-BTC"}),
        FanOutTask(lambda: client.get_json("/ticker/ETH"), context={"pair": "USDT-ETH"}),
    ])
    for outcome in outcomes:
        if outcome.success:
            tickers[outcome.context["pair"]] = outcome.value

Guarantees:
    - every task is started before any of them is awaited
    - outcomes[i] always corresponds to tasks[i]
    - with stop_on_error=False the aggregator itself never raises
    - with stop_on_error=True the first failure is raised; the remaining
      tasks keep running but their outcomes are discarded
    - a task that gets cancelled is reported as a failed outcome holding
      CancelledError; cancelling the fan-out itself cancels every task
"""

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar, Union

from gateway_core.errors import ExtError
from gateway_core.logging import get_logger

R = TypeVar("R")

logger = get_logger(__name__)


@dataclass
class FanOutTask(Generic[R]):
    """
    One unit of fan-out work.

    Attributes:
        operation: Zero-argument callable returning an awaitable (or an awaitable itself)
        context: Opaque metadata echoed back in the outcome and used in failure logs
    """

    operation: Union[Callable[[], Awaitable[R]], Awaitable[R]]
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TaskOutcome(Generic[R]):
    """
    Result of one fan-out task.

    Attributes:
        success: True if the operation completed without raising
        value: The operation result, or the exception it raised
        context: The context supplied with the task
    """

    success: bool
    value: Any
    context: Dict[str, Any]

    @property
    def error(self) -> Optional[BaseException]:
        return None if self.success else self.value


TaskLike = Union[FanOutTask, Callable[[], Awaitable[Any]], Awaitable[Any]]


def _normalize(task: TaskLike) -> FanOutTask:
    if isinstance(task, FanOutTask):
        if task.context is None:
            return FanOutTask(task.operation, {})
        return task
    return FanOutTask(task, {})


def _start(task: FanOutTask) -> "asyncio.Future":
    operation = task.operation
    try:
        awaitable = operation if inspect.isawaitable(operation) else operation()
        return asyncio.ensure_future(awaitable)
    except Exception as e:
        # the operation failed before returning an awaitable
        future = asyncio.get_running_loop().create_future()
        future.set_exception(e)
        return future


def _describe_failure(error: BaseException) -> str:
    if isinstance(error, ExtError):
        return json.dumps(error.to_dict(), default=str)
    return f"{type(error).__name__}: {error}"


def _log_failure(context: Dict[str, Any], error: BaseException) -> None:
    logger.error(
        f"{json.dumps(context, default=str)} => {_describe_failure(error)}",
        exc_info=None if isinstance(error, ExtError) else error
    )


async def _reflect(future: "asyncio.Future", context: Dict[str, Any], log_failures: bool, stop_on_error: bool) -> TaskOutcome:
    # asyncio.wait never cancels the future it waits on, so a cancelled
    # task can be told apart from a cancelled fan-out
    await asyncio.wait([future])
    if future.cancelled():
        error: BaseException = asyncio.CancelledError()
    else:
        error = future.exception()
        if error is None:
            return TaskOutcome(success=True, value=future.result(), context=context)
        if not isinstance(error, Exception):
            raise error

    if log_failures:
        _log_failure(context, error)
    if stop_on_error:
        raise error
    return TaskOutcome(success=False, value=error, context=context)


async def gather_outcomes(
    tasks: Sequence[TaskLike],
    log_failures: bool = True,
    stop_on_error: bool = False
) -> List[TaskOutcome]:
    """
    Run tasks concurrently and return one outcome per task, in input order.

    Args:
        tasks: FanOutTask objects, zero-argument coroutine functions, or awaitables
        log_failures: Log each failure together with its task context
        stop_on_error: Raise the first failure instead of collecting it

    Returns:
        List[TaskOutcome]: outcomes[i] belongs to tasks[i]

    Raises:
        The first exception raised by a task, only when stop_on_error is True

    Example:
        >>> outcomes = await gather_outcomes([ok_task, failing_task, ok_task])
        >>> [o.success for o in outcomes]
        [True, False, True]
    """
    normalized = [_normalize(task) for task in tasks]
    if not normalized:
        return []

    # Start everything first so no task waits for another to be scheduled
    futures = [_start(task) for task in normalized]
    reflected = [
        _reflect(future, task.context, log_failures, stop_on_error)
        for future, task in zip(futures, normalized)
    ]
    try:
        return list(await asyncio.gather(*reflected))
    except asyncio.CancelledError:
        for future in futures:
            future.cancel()
        raise


class FanOutAggregator:
    """
    Fan-out runner carrying default options.

    Example:
        >>> aggregator = FanOutAggregator(log_failures=settings.log_fanout_failures)
        >>> outcomes = await aggregator.all(tasks)
        >>> values = aggregator.successful_values(outcomes)
    """

    def __init__(self, log_failures: bool = True, stop_on_error: bool = False):
        self.log_failures = log_failures
        self.stop_on_error = stop_on_error

    async def all(
        self,
        tasks: Sequence[TaskLike],
        log_failures: Optional[bool] = None,
        stop_on_error: Optional[bool] = None
    ) -> List[TaskOutcome]:
        return await gather_outcomes(
            tasks,
            log_failures=self.log_failures if log_failures is None else log_failures,
            stop_on_error=self.stop_on_error if stop_on_error is None else stop_on_error
        )

    @staticmethod
    def successful_values(outcomes: Sequence[TaskOutcome]) -> List[Any]:
        return [outcome.value for outcome in outcomes if outcome.success]

    @staticmethod
    def failures(outcomes: Sequence[TaskOutcome]) -> List[TaskOutcome]:
        return [outcome for outcome in outcomes if not outcome.success]
