import asyncio

import pytest

from workflow_claw.locks import ResourceSerializer


@pytest.mark.asyncio
async def test_concurrent_appends_to_one_path_do_not_interleave(tmp_path):
    serializer = ResourceSerializer()
    target = tmp_path / "doc.md"
    target.write_text("")

    async def append(i: int) -> None:
        async def mutate() -> None:
            text = target.read_text()
            await asyncio.sleep(0)
            target.write_text(text + f"entry-{i}\n")

        await serializer.with_lock(str(target), mutate)

    await asyncio.gather(*(append(i) for i in range(25)))

    lines = target.read_text().splitlines()
    assert lines == [f"entry-{i}" for i in range(25)]
    assert serializer.active_paths() == 0


@pytest.mark.asyncio
async def test_distinct_paths_run_concurrently():
    serializer = ResourceSerializer()
    first_entered = asyncio.Event()
    release = asyncio.Event()

    async def hold_a() -> None:
        async with serializer.hold("a"):
            first_entered.set()
            await release.wait()

    task = asyncio.create_task(hold_a())
    await first_entered.wait()

    # "b" is not blocked by the held "a"
    result = await asyncio.wait_for(serializer.with_lock("b", lambda: "done"), 1)
    assert result == "done"
    assert serializer.active_paths() == 1

    release.set()
    await task
    assert serializer.active_paths() == 0


@pytest.mark.asyncio
async def test_mutation_errors_propagate_and_release_lock():
    serializer = ResourceSerializer()

    def boom() -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await serializer.with_lock("p", boom)

    assert await serializer.with_lock("p", lambda: 42) == 42
    assert serializer.active_paths() == 0
