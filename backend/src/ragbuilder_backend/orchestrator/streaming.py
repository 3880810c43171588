"""Bounded fragment channel between a generation producer and the answer consumer."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, List

LOGGER = logging.getLogger(__name__)

_CLOSED = object()


class FragmentStream:
    """Lazy, finite, non-restartable stream of answer fragments.

    The producer coroutine starts on the first ``__anext__`` and pushes into a
    bounded queue; closing the stream cancels the producer and, through it,
    the provider's stream. Use ``async with`` or :meth:`aclose` when a consumer
    may stop early. With ``idle_timeout`` set, a producer that cannot hand
    over a fragment for that long closes the stream itself.
    """

    def __init__(
        self,
        source: Callable[[], AsyncIterator[str]],
        *,
        buffer_size: int = 16,
        idle_timeout: float | None = None,
    ) -> None:
        self._source = source
        self._idle_timeout = idle_timeout
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max(1, buffer_size))
        self._task: asyncio.Task[None] | None = None
        self._error: BaseException | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    def __aiter__(self) -> "FragmentStream":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        if self._task is None:
            self._task = asyncio.create_task(self._produce())

        item = await self._queue.get()
        if item is _CLOSED:
            self._closed = True
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        return item  # type: ignore[return-value]

    async def __aenter__(self) -> "FragmentStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    def cancel(self) -> None:
        """Stop the producer without waiting for it to unwind."""

        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        try:
            # wake a consumer blocked on an empty queue
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                LOGGER.debug("Fragment producer cancelled")

    async def collect(self) -> List[str]:
        return [fragment async for fragment in self]

    async def text(self) -> str:
        return "".join(await self.collect())

    # ------------------------------------------------------------------
    async def _produce(self) -> None:
        iterator = self._source()
        try:
            async for fragment in iterator:
                if not await self._put(fragment):
                    LOGGER.warning("Fragment consumer idle for %.1fs; closing stream", self._idle_timeout)
                    self._closed = True
                    break
        except Exception as exc:
            LOGGER.exception("Fragment producer failed")
            self._error = exc
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()
        await self._put(_CLOSED)

    async def _put(self, item: object) -> bool:
        if self._idle_timeout is None:
            await self._queue.put(item)
            return True
        try:
            await asyncio.wait_for(self._queue.put(item), timeout=self._idle_timeout)
        except asyncio.TimeoutError:
            return False
        return True


__all__ = ["FragmentStream"]
