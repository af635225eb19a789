"""
Run a collaborator call as its own task and stream its progress.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from videotranslator.core.constants import PROGRESS_CHANNEL_SIZE
from videotranslator.core.collaborators import ProgressItem, Report


@dataclass(frozen=True)
class Finished:
    value: Any


async def stream_operation(operation: Callable[[Report], Awaitable[Any]],
                           maxsize: int = PROGRESS_CHANNEL_SIZE) -> AsyncIterator:
    """
    Start `operation(report)` as a task and yield every progress item it
    reports, then a single Finished(result).

    The queue is bounded, so a slow consumer pauses the producer. An
    exception raised by the operation propagates out of the iterator.
    Closing the iterator early cancels the task.
    """
    queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def report(item: ProgressItem):
        await queue.put(item)

    task = asyncio.create_task(operation(report))
    getter = None
    try:
        while True:
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({getter, task},
                                         return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
                continue

            getter.cancel()
            # drain what was reported before the task finished
            while not queue.empty():
                yield queue.get_nowait()
            yield Finished(task.result())
            return
    finally:
        if getter is not None and not getter.done():
            getter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
