import asyncio
import logging
import zlib
from typing import Any, Awaitable, Callable, Hashable, List

logger = logging.getLogger(__name__)


def lane_for(key: Hashable, lanes: int) -> int:
    """Stable worker index for `key`; unlike hash() it does not vary per process."""
    return zlib.crc32(repr(key).encode("utf-8")) % lanes


class KeyedWorkQueue:
    """
    Fixed pool of async workers where every item submitted under the same key
    is handled by the same worker, in submission order. Items under different
    keys may run concurrently.

    The handler owns its error handling; an exception escaping it is logged and
    the worker moves on to its next item.
    """

    def __init__(self, workers: int, handler: Callable[[Any], Awaitable[None]]):
        self.workers = max(1, workers)
        self.handler = handler
        self._lanes: List[List[Any]] = [[] for _ in range(self.workers)]

    def submit(self, key: Hashable, item: Any) -> int:
        lane = lane_for(key, self.workers)
        self._lanes[lane].append(item)
        return lane

    async def _drain(self, index: int, items: List[Any]) -> None:
        for item in items:
            try:
                await self.handler(item)
            except Exception:
                logger.exception("Worker %d failed on %r", index, item)

    async def run(self) -> None:
        lanes, self._lanes = self._lanes, [[] for _ in range(self.workers)]
        await asyncio.gather(*(self._drain(i, items) for i, items in enumerate(lanes) if items))
