import asyncio

import pytest
from prometheus_client import REGISTRY

from app.tasks import AnalysisTaskQueue


def _count(status: str) -> float:
    val = REGISTRY.get_sample_value("salesai_analysis_tasks_total", {"status": status})
    return float(val) if val is not None else 0.0


@pytest.mark.asyncio
async def test_workers_run_jobs():
    q = AnalysisTaskQueue(concurrency=2)
    q.start()
    done = []

    async def job(i):
        await asyncio.sleep(0)
        done.append(i)

    for i in range(5):
        q.submit("analysis", f"s{i}", lambda i=i: job(i))
    await q.join()
    await q.stop()
    assert sorted(done) == [0, 1, 2, 3, 4]
    assert not q.failures


@pytest.mark.asyncio
async def test_failures_are_recorded_not_raised():
    q = AnalysisTaskQueue(concurrency=1, failures_kept=2)
    q.start()
    before = _count("failure")

    async def boom():
        raise RuntimeError("provider exploded")

    for i in range(3):
        q.submit("analysis", f"s{i}", boom)
    await q.join()
    await q.stop()
    assert len(q.failures) == 2
    assert q.failures[-1]["sessionId"] == "s2"
    assert "provider exploded" in q.failures[-1]["error"]
    assert _count("failure") >= before + 3


@pytest.mark.asyncio
async def test_submit_without_workers_runs_detached():
    q = AnalysisTaskQueue()
    ran = asyncio.Event()

    async def job():
        ran.set()

    q.submit("analysis", "s1", job)
    await q.join()
    assert ran.is_set()
    assert q.qsize() == 0
