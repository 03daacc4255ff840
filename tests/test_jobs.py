import asyncio

import pytest
from conftest import FakeGeminiClient

from reelworks.config import Settings
from reelworks.services.jobs import JobRegistry, JobStatus
from reelworks.services.operations import Operation
from reelworks.services.orchestrator import TaskOrchestrator, TaskResult, TaskStatus
from reelworks.services.providers.gemini_video import GeminiClient

ARTIFACT = b"\x00" * 1024


@pytest.fixture
def orchestrator(settings, fast_policy):
    return TaskOrchestrator(FakeGeminiClient(), settings=settings, retry_policy=fast_policy)


async def _finished_video(job_id):
    return TaskResult("video", TaskStatus.SUCCEEDED, message="Complete.", data=ARTIFACT)


async def _run_jobs(registry, count):
    jobs = [registry.submit("video", _finished_video) for _ in range(count)]
    await asyncio.gather(*(job.task for job in jobs))
    return jobs


def test_finished_jobs_are_bounded(orchestrator):
    registry = JobRegistry(orchestrator, max_finished=2)

    jobs = asyncio.run(_run_jobs(registry, 5))

    assert len(registry) == 2
    assert [j.id for j in registry.jobs()] == [j.id for j in jobs[-2:]]
    assert all(j.status is JobStatus.SUCCEEDED for j in registry.jobs())
    with pytest.raises(KeyError):
        registry.get(jobs[0].id)


def test_retention_limit_comes_from_settings(fast_policy):
    settings = Settings(MAX_FINISHED_JOBS=3, _env_file=None)
    orchestrator = TaskOrchestrator(FakeGeminiClient(), settings=settings, retry_policy=fast_policy)
    registry = JobRegistry(orchestrator)

    asyncio.run(_run_jobs(registry, 6))
    assert registry.max_finished == 3
    assert len(registry) == 3


def test_zero_limit_keeps_every_job(orchestrator):
    registry = JobRegistry(orchestrator, max_finished=0)
    asyncio.run(_run_jobs(registry, 4))
    assert len(registry) == 4


def test_running_jobs_are_never_evicted(orchestrator):
    registry = JobRegistry(orchestrator, max_finished=1)

    async def scenario():
        gate = asyncio.Event()

        async def slow(job_id):
            await gate.wait()
            return TaskResult("video", TaskStatus.SUCCEEDED, data=ARTIFACT)

        running = registry.submit("video", slow)
        await _run_jobs(registry, 3)
        retained_while_running = {j.id for j in registry.jobs()}
        gate.set()
        await running.task
        return running, retained_while_running

    running, retained = asyncio.run(scenario())
    assert running.id in retained
    assert len(retained) == 2
    assert [j.id for j in registry.jobs()] == [running.id]


def test_evicted_job_releases_subscribers(orchestrator):
    registry = JobRegistry(orchestrator, max_finished=1)

    async def scenario():
        gate = asyncio.Event()

        async def waiting(job_id):
            await gate.wait()
            return TaskResult("video", TaskStatus.SUCCEEDED)

        first = registry.submit("video", waiting)
        queue = registry.subscribe(first.id)
        gate.set()
        await first.task
        await _run_jobs(registry, 1)
        messages = []
        while not queue.empty():
            messages.append(queue.get_nowait())
        return messages

    messages = asyncio.run(scenario())
    assert messages[-1] is None
    assert messages[-2]["status"] == "succeeded"


def test_shutdown_drops_jobs_and_closes_client(orchestrator):
    registry = JobRegistry(orchestrator)

    async def scenario():
        await _run_jobs(registry, 3)
        await registry.shutdown()

    asyncio.run(scenario())
    assert len(registry) == 0
    assert orchestrator.client.closed


def test_shutdown_closes_owned_http_client(settings, fast_policy):
    client = GeminiClient(settings=settings)
    registry = JobRegistry(TaskOrchestrator(client, settings=settings, retry_policy=fast_policy))

    async def scenario():
        http = client._get_client()
        await registry.shutdown()
        return http

    assert asyncio.run(scenario()).is_closed


def test_shutdown_cancels_running_jobs(settings, fast_policy):
    pending = Operation("operations/op-1")
    fake = FakeGeminiClient(polls=[pending])
    registry = JobRegistry(TaskOrchestrator(
        fake, settings=settings, retry_policy=fast_policy, poll_interval=0.005,
    ))

    async def scenario():
        orchestrator = registry.orchestrator
        job = registry.submit("video", lambda slot: orchestrator.generate_video("x", slot=slot))
        await asyncio.sleep(0.02)
        await registry.shutdown()
        return job

    job = asyncio.run(scenario())
    assert job.status is JobStatus.CANCELLED
    assert "download" not in fake.calls
    assert fake.closed
