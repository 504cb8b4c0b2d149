from __future__ import annotations

from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Generic,
    Hashable,
    Protocol,
    TypeVar,
)

import anyio

from .logging import get_logger

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")

if TYPE_CHECKING:
    from anyio.abc import TaskGroup
else:
    TaskGroup = object


class TaskStarter(Protocol):
    def start_soon(self, func: Callable[..., Awaitable[Any]], *args: Any) -> None: ...


class BurstQueueStore(Protocol[K, T]):
    def append(self, key: K, item: T) -> bool:
        """Queue ``item``; return True when it opened a new batch."""
        ...

    def take(self, key: K) -> list[T]: ...

    def pending(self, key: K) -> int: ...


class MemoryBurstQueueStore(Generic[K, T]):
    def __init__(self) -> None:
        self._batches: dict[K, list[T]] = {}

    def append(self, key: K, item: T) -> bool:
        batch = self._batches.get(key)
        if batch is None:
            self._batches[key] = [item]
            return True
        batch.append(item)
        return False

    def take(self, key: K) -> list[T]:
        return self._batches.pop(key, [])

    def pending(self, key: K) -> int:
        return len(self._batches.get(key, ()))

    def __contains__(self, key: object) -> bool:
        return key in self._batches


class BurstBatcher(Generic[K, T]):
    """Coalesce bursts of events per key into one delayed, sequential flush.

    The first item for a key with no open batch arms a single flush after
    ``delay_s``; later items join that batch without re-arming. A flush takes
    the batch out of the table before processing it, so items arriving
    meanwhile open a new batch.
    """

    def __init__(
        self,
        *,
        task_group: TaskGroup | TaskStarter,
        process: Callable[[T], Awaitable[object]],
        delay_s: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
        queues: BurstQueueStore[K, T] | None = None,
    ) -> None:
        self._task_group = task_group
        self._process = process
        self._delay_s = delay_s
        self._sleep = sleep
        self._queues: BurstQueueStore[K, T] = queues or MemoryBurstQueueStore()

    def submit(self, key: K, item: T) -> bool:
        opened = self._queues.append(key, item)
        if opened:
            self._task_group.start_soon(self._flush_later, key)
            logger.debug("batcher.batch.opened", key=key, delay_s=self._delay_s)
        return opened

    def pending(self, key: K) -> int:
        return self._queues.pending(key)

    async def _flush_later(self, key: K) -> None:
        await self._sleep(self._delay_s)
        await self.flush(key)

    async def flush(self, key: K) -> int:
        items = self._queues.take(key)
        if not items:
            return 0
        logger.debug("batcher.batch.flush", key=key, size=len(items))
        failed = 0
        for item in items:
            try:
                await self._process(item)
            except Exception:
                failed += 1
                logger.exception("batcher.item.failed", key=key)
        if failed:
            logger.warning(
                "batcher.batch.partial", key=key, size=len(items), failed=failed
            )
        return len(items)
