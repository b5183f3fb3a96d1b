import asyncio
import pytest
from unittest.mock import AsyncMock

from txflow.core.poller import JobStatusPoller
from txflow.core.errors import TransportError, RemoteRejectedError, SubmissionError, ResultMissingError
from txflow.core.state_machine import JOB_PENDING, JOB_COMPLETED, JOB_FAILED, JOB_TIMED_OUT
from txflow.store.models import Job

COMPLETED = {"result": {"status": "completed", "uploadFileEcontractS3": {"unsigned_file": {"file_url": "https://x/f.pdf"}}}}


def make_backend(*statuses):
    backend = AsyncMock()
    backend.submit.return_value = {"queueName": "q1", "jobId": "j1"}
    backend.status.side_effect = list(statuses)
    return backend


def make_poller(backend, **kw):
    kw.setdefault("interval_sec", 0.01)
    kw.setdefault("max_attempts", 0)
    kw.setdefault("timeout_sec", 0)
    return JobStatusPoller(backend, **kw)


@pytest.mark.anyio
async def test_start_returns_pending_job():
    poller = make_poller(make_backend())
    job = await poller.start()
    assert job.queueName == "q1"
    assert job.jobId == "j1"
    assert job.state == JOB_PENDING

@pytest.mark.anyio
async def test_start_rejected_is_submission_error():
    backend = make_backend()
    backend.submit.side_effect = RemoteRejectedError("not eligible", status_code=400)
    with pytest.raises(SubmissionError, match="not eligible"):
        await make_poller(backend).start()

@pytest.mark.anyio
async def test_start_without_job_id_is_submission_error():
    backend = make_backend()
    backend.submit.return_value = {"queueName": "q1", "jobId": ""}
    with pytest.raises(SubmissionError):
        await make_poller(backend).start()

@pytest.mark.anyio
async def test_start_transport_error_propagates():
    backend = make_backend()
    backend.submit.side_effect = TransportError("down")
    with pytest.raises(TransportError):
        await make_poller(backend).start()

@pytest.mark.anyio
async def test_scenario_pending_then_completed():
    backend = make_backend({"status": "pending"}, COMPLETED)
    poller = make_poller(backend)
    job = await poller.start()

    await poller.poll(job)
    assert job.state == JOB_PENDING

    await poller.poll(job)
    assert job.state == JOB_COMPLETED
    assert job.resultUrl == "https://x/f.pdf"

@pytest.mark.anyio
async def test_scenario_failed_with_message():
    backend = make_backend({"status": "failed", "message": "quota exceeded"})
    poller = make_poller(backend)
    job = await poller.start()
    await poller.poll(job)
    assert job.state == JOB_FAILED
    assert job.errorMessage == "quota exceeded"
    assert job.resultUrl is None

@pytest.mark.anyio
async def test_missing_status_field_is_pending_not_error():
    backend = make_backend({}, {"result": {"foo": 1}})
    poller = make_poller(backend)
    job = await poller.start()
    await poller.poll(job)
    await poller.poll(job)
    assert job.state == JOB_PENDING

@pytest.mark.anyio
async def test_transport_and_rejection_during_poll_count_as_pending():
    backend = make_backend(TransportError("timeout"), RemoteRejectedError("bad gateway"), COMPLETED)
    poller = make_poller(backend)
    job = await poller.start()
    await poller.run(job)
    assert job.state == JOB_COMPLETED
    assert backend.status.call_count == 3

@pytest.mark.anyio
async def test_run_stops_polling_after_terminal_state():
    backend = make_backend({"status": "pending"}, {"status": "pending"}, COMPLETED, {"status": "pending"})
    poller = make_poller(backend)
    job = await poller.start()
    await poller.run(job)
    assert job.state == JOB_COMPLETED
    assert backend.status.call_count == 3

    # Further polls are no-ops
    await poller.poll(job)
    await poller.run(job)
    assert backend.status.call_count == 3

@pytest.mark.anyio
async def test_completed_without_url_is_result_missing():
    backend = make_backend({"result": {"status": "completed"}}, {"status": "pending"})
    poller = make_poller(backend)
    job = await poller.start()
    with pytest.raises(ResultMissingError):
        await poller.run(job)
    assert job.terminal
    assert job.resultUrl is None
    assert backend.status.call_count == 1

@pytest.mark.anyio
async def test_response_arriving_after_terminal_is_discarded():
    gate = asyncio.Event()

    async def slow_status(job):
        await gate.wait()
        return {"status": "pending"}

    backend = make_backend()
    backend.status.side_effect = slow_status
    poller = make_poller(backend)
    job = await poller.start()

    task = asyncio.ensure_future(poller.poll(job))
    await asyncio.sleep(0)
    job.state = JOB_FAILED
    job.errorMessage = "cancelled remotely"
    gate.set()
    await task
    assert job.state == JOB_FAILED
    assert job.errorMessage == "cancelled remotely"

@pytest.mark.anyio
async def test_concurrent_polls_share_one_request():
    gate = asyncio.Event()

    async def slow_status(job):
        await gate.wait()
        return {"status": "pending"}

    backend = make_backend()
    backend.status.side_effect = slow_status
    poller = make_poller(backend)
    job = await poller.start()

    t1 = asyncio.ensure_future(poller.poll(job))
    t2 = asyncio.ensure_future(poller.poll(job))
    await asyncio.sleep(0)
    gate.set()
    await asyncio.gather(t1, t2)
    assert backend.status.call_count == 1
    assert job.attempts == 1

@pytest.mark.anyio
async def test_max_attempts_times_out():
    backend = make_backend(*([{"status": "pending"}] * 10))
    poller = make_poller(backend, max_attempts=3)
    job = await poller.start()
    await poller.run(job)
    assert job.state == JOB_TIMED_OUT
    assert job.errorMessage == "max_attempts_reached"
    assert backend.status.call_count == 3

@pytest.mark.anyio
async def test_overall_timeout():
    backend = AsyncMock()
    backend.status.return_value = {"status": "pending"}
    poller = JobStatusPoller(backend, interval_sec=0.02, max_attempts=0, timeout_sec=0.05)
    job = Job(queueName="q1", jobId="j1", state=JOB_PENDING)
    await poller.run(job)
    assert job.state == JOB_TIMED_OUT
    assert job.errorMessage == "poll_timeout"

@pytest.mark.anyio
async def test_cancel_stops_future_polls():
    backend = AsyncMock()
    backend.status.return_value = {"status": "pending"}
    poller = make_poller(backend, interval_sec=10)
    job = Job(queueName="q1", jobId="j1", state=JOB_PENDING)

    task = poller.watch(job)
    await asyncio.sleep(0.01)
    poller.cancel(job)
    await asyncio.wait_for(task, timeout=1)

    assert backend.status.call_count == 1
    assert job.state == JOB_PENDING

@pytest.mark.anyio
async def test_cancel_before_loop_starts():
    backend = AsyncMock()
    backend.status.return_value = {"status": "pending"}
    poller = make_poller(backend)
    job = Job(queueName="q1", jobId="j1", state=JOB_PENDING)

    task = poller.watch(job)
    poller.cancel(job)
    await asyncio.wait_for(task, timeout=1)
    assert backend.status.call_count == 0

@pytest.mark.anyio
async def test_on_update_called_per_poll():
    seen = []
    backend = make_backend({"status": "pending"}, COMPLETED)
    poller = make_poller(backend)
    job = await poller.start()

    async def on_update(j):
        seen.append(j.state)

    await poller.run(job, on_update=on_update)
    assert seen == [JOB_PENDING, JOB_COMPLETED]
