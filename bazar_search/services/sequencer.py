"""Per-client request sequencing: a newer request supersedes the older one.

The client key is the X-Client-Id header when sent, else the authenticated
identity. Requests without either are never superseded. Search and
suggestions are sequenced separately so a suggestions call never cancels a
search from the same keystroke.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from starlette.requests import Request

from bazar_search.errors import RequestSuperseded

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _cancel_on_disconnect(request: Request, task: asyncio.Future):
    while not task.done():
        message = await request.receive()
        if message["type"] == "http.disconnect":
            if not task.done():
                logger.debug("Client disconnected | canceling in-flight request")
                task.cancel()
            return


class RequestSequencer:
    """Tracks the in-flight task per client key and cancels it when replaced."""

    def __init__(self, name: str = "search"):
        self.name = name
        self._inflight: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._inflight)

    async def run(
        self,
        key: str | None,
        work: Awaitable[T],
        request: Request | None = None,
    ) -> T:
        """Await `work` as a task. Raises RequestSuperseded if it gets canceled
        by a newer request with the same key or by the client disconnecting.
        """
        task = asyncio.ensure_future(work)
        if key:
            previous = self._inflight.get(key)
            if previous is not None and not previous.done():
                previous.cancel()
                logger.debug("Request superseded | op=%s", self.name)
            self._inflight[key] = task

        watcher = asyncio.create_task(_cancel_on_disconnect(request, task)) if request is not None else None
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if watcher is not None:
                watcher.cancel()
            if key and self._inflight.get(key) is task:
                del self._inflight[key]

        if task.cancelled():
            raise RequestSuperseded()
        return task.result()


def client_key(request: Request, subject: str | None) -> str | None:
    header = request.headers.get("x-client-id", "").strip()
    if header:
        return f"client:{header[:128]}"
    if subject:
        return f"user:{subject}"
    return None