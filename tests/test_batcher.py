import anyio
import pytest

from chatdispatch.batcher import BurstBatcher, MemoryBurstQueueStore
from tests.fakes import MockTaskGroup


async def _no_sleep(delay: float) -> None:
    return None


def _batcher(tg: MockTaskGroup, seen: list[str], **kwargs) -> BurstBatcher[str, str]:
    async def process(item: str) -> None:
        if item == "boom":
            raise RuntimeError("boom")
        seen.append(item)

    return BurstBatcher(task_group=tg, process=process, sleep=_no_sleep, **kwargs)


@pytest.mark.anyio
async def test_burst_arms_single_flush_and_keeps_order() -> None:
    tg = MockTaskGroup()
    seen: list[str] = []
    batcher = _batcher(tg, seen)

    opened = [batcher.submit("t1", f"s{i}") for i in range(5)]

    assert opened == [True, False, False, False, False]
    assert len(tg.tasks) == 1
    assert batcher.pending("t1") == 5

    await tg.run_all()

    assert seen == ["s0", "s1", "s2", "s3", "s4"]
    assert batcher.pending("t1") == 0


@pytest.mark.anyio
async def test_item_after_flush_opens_new_batch() -> None:
    tg = MockTaskGroup()
    seen: list[str] = []
    batcher = _batcher(tg, seen)

    batcher.submit("t1", "a")
    await tg.run_all()
    assert batcher.submit("t1", "b") is True
    assert len(tg.tasks) == 1

    await tg.run_all()
    assert seen == ["a", "b"]


@pytest.mark.anyio
async def test_keys_are_batched_independently() -> None:
    tg = MockTaskGroup()
    seen: list[str] = []
    batcher = _batcher(tg, seen)

    batcher.submit("t1", "a")
    batcher.submit("t2", "b")
    batcher.submit("t1", "c")

    assert len(tg.tasks) == 2
    await tg.run_all()
    assert seen == ["a", "c", "b"]


@pytest.mark.anyio
async def test_failed_item_does_not_stop_batch() -> None:
    tg = MockTaskGroup()
    seen: list[str] = []
    batcher = _batcher(tg, seen)

    for item in ("a", "boom", "c"):
        batcher.submit("t1", item)
    await tg.run_all()

    assert seen == ["a", "c"]


@pytest.mark.anyio
async def test_flush_of_empty_key_is_noop() -> None:
    batcher = _batcher(MockTaskGroup(), [])
    assert await batcher.flush("nothing") == 0


@pytest.mark.anyio
async def test_flush_waits_for_delay() -> None:
    tg = MockTaskGroup()
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    async def process(item: str) -> None:
        return None

    batcher = BurstBatcher(task_group=tg, process=process, delay_s=2.5, sleep=sleep)
    batcher.submit("t1", "a")
    await tg.run_all()

    assert delays == [2.5]


@pytest.mark.anyio
async def test_custom_queue_store_is_used() -> None:
    queues: MemoryBurstQueueStore[str, str] = MemoryBurstQueueStore()
    batcher = _batcher(MockTaskGroup(), [], queues=queues)

    batcher.submit("t1", "a")

    assert "t1" in queues
    assert queues.pending("t1") == 1


@pytest.mark.anyio
async def test_real_task_group_flushes_after_delay() -> None:
    seen: list[str] = []

    async def process(item: str) -> None:
        seen.append(item)

    async with anyio.create_task_group() as tg:
        batcher = BurstBatcher(task_group=tg, process=process, delay_s=0.01)
        batcher.submit("t1", "a")
        batcher.submit("t1", "b")
        assert seen == []

    assert seen == ["a", "b"]


@pytest.mark.anyio
async def test_default_flush_delay_is_one_second() -> None:
    tg = MockTaskGroup()
    delays: list[float] = []

    async def sleep(delay: float) -> None:
        delays.append(delay)

    async def process(item: str) -> None:
        return None

    batcher = BurstBatcher(task_group=tg, process=process, sleep=sleep)
    for i in range(5):
        batcher.submit("t1", f"s{i}")
    await tg.run_all()

    assert delays == [1.0]
