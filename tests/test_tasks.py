import asyncio

from course_bot.tasks import SideEffectRunner


def test_successful_effect_runs_once():
    calls = []

    async def effect():
        calls.append(1)
        return "ok"

    async def scenario():
        runner = SideEffectRunner(retries=3, base_delay=0)
        task = runner.spawn("ok", effect)
        await runner.drain()
        return runner, task.result()

    runner, result = asyncio.run(scenario())
    assert calls == [1]
    assert result == "ok"
    assert runner.dead_letters == []


def test_failing_effect_is_retried_then_dead_lettered():
    attempts = []
    waits = []

    async def sleep(seconds):
        waits.append(seconds)

    async def effect():
        attempts.append(1)
        raise RuntimeError("telegram down")

    async def scenario():
        runner = SideEffectRunner(retries=2, base_delay=1.0, sleep=sleep)
        runner.spawn("notify", effect)
        await runner.drain()
        return runner

    runner = asyncio.run(scenario())
    assert len(attempts) == 3
    assert waits == [1.0, 2.0]
    assert len(runner.dead_letters) == 1
    letter = runner.dead_letters[0]
    assert letter.name == "notify"
    assert letter.attempts == 3
    assert "telegram down" in letter.error


def test_flaky_effect_recovers():
    attempts = []

    async def effect():
        attempts.append(1)
        if len(attempts) < 2:
            raise RuntimeError("flaky")

    async def scenario():
        runner = SideEffectRunner(retries=3, base_delay=0)
        runner.spawn("flaky", effect)
        await runner.drain()
        return runner

    runner = asyncio.run(scenario())
    assert len(attempts) == 2
    assert runner.dead_letters == []


def test_spawn_does_not_raise_into_caller():
    async def effect():
        raise ValueError("boom")

    async def scenario():
        runner = SideEffectRunner(retries=0, base_delay=0)
        runner.spawn("boom", effect)
        assert runner.pending == 1
        await runner.drain()
        return runner

    runner = asyncio.run(scenario())
    assert runner.pending == 0
    assert len(runner.dead_letters) == 1


def test_drain_waits_for_effects_spawned_by_effects():
    order = []

    async def scenario():
        runner = SideEffectRunner(base_delay=0)

        async def child():
            order.append("child")

        async def parent():
            order.append("parent")
            runner.spawn("child", child)

        runner.spawn("parent", parent)
        await runner.drain()

    asyncio.run(scenario())
    assert order == ["parent", "child"]
