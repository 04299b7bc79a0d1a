"""Bounded concurrent fan-out.

Every branch runs as its own task; branches still pending when the deadline
passes are canceled and reported as timed out. A failing branch never takes
the others down with it.
"""

import asyncio
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any


@dataclass
class FanOutResult:
    results: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, BaseException] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return bool(self.timed_out)


async def gather_within(calls: dict[str, Awaitable[Any]], timeout: float) -> FanOutResult:
    """Run named awaitables concurrently, waiting at most `timeout` seconds.

    If the caller is canceled, every branch is canceled before re-raising.
    """
    outcome = FanOutResult()
    if not calls:
        return outcome

    tasks = {asyncio.ensure_future(aw): name for name, aw in calls.items()}
    try:
        done, pending = await asyncio.wait(tasks, timeout=max(timeout, 0))
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    for task, name in tasks.items():
        if task in pending:
            outcome.timed_out.append(name)
        elif task.cancelled():
            outcome.failures[name] = asyncio.CancelledError()
        elif task.exception() is not None:
            outcome.failures[name] = task.exception()
        else:
            outcome.results[name] = task.result()
    return outcome
