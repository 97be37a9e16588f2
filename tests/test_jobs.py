from __future__ import annotations

import asyncio

from fsup.core.jobs import DetachedTaskRunner, ImmediateJobBackend, RQJobBackend, get_job_backend


def test_inline_backend_is_immediate():
    assert isinstance(get_job_backend(), ImmediateJobBackend)


def test_runner_tracks_and_drains_tasks():
    async def scenario():
        runner = DetachedTaskRunner()
        finished = []

        async def work(n):
            await asyncio.sleep(0.01)
            finished.append(n)

        for n in range(3):
            runner.spawn(work(n), name=f"work-{n}")
        assert runner.pending == 3
        await runner.drain()
        return runner.pending, sorted(finished)

    assert asyncio.run(scenario()) == (0, [0, 1, 2])


def test_crashing_task_does_not_disturb_siblings():
    async def scenario():
        runner = DetachedTaskRunner()
        done = []

        async def crash():
            raise RuntimeError("boom")

        async def ok():
            await asyncio.sleep(0.01)
            done.append(True)

        runner.spawn(crash(), name="crash")
        runner.spawn(ok(), name="ok")
        await runner.drain()
        return runner.pending, done

    assert asyncio.run(scenario()) == (0, [True])


def test_spawned_task_outlives_its_spawner():
    async def scenario():
        runner = DetachedTaskRunner()
        done = asyncio.Event()

        async def request_handler():
            async def derivation():
                await asyncio.sleep(0.05)
                done.set()

            runner.spawn(derivation())

        handler = asyncio.create_task(request_handler())
        await handler
        await asyncio.wait_for(done.wait(), timeout=2)
        return done.is_set()

    assert asyncio.run(scenario()) is True


def test_shutdown_cancels_stragglers():
    async def scenario():
        runner = DetachedTaskRunner()
        task = runner.spawn(asyncio.sleep(30), name="slow")
        await runner.shutdown(grace_s=0.05)
        return task.cancelled(), runner.pending

    assert asyncio.run(scenario()) == (True, 0)


def test_only_out_of_process_workers_derive_thumbnails():
    assert ImmediateJobBackend.derives_thumbnails is False
    assert RQJobBackend.derives_thumbnails is True
