"""
JobStatusPoller
---------------
start() -> one immediate poll -> wait POLL_INTERVAL_SEC -> poll ... until the
job is COMPLETED / FAILED, the owner cancels, or a safety net trips
(POLL_MAX_ATTEMPTS / POLL_TIMEOUT_SEC -> TIMED_OUT).

Invariants:
- at most one status call in flight per job; concurrent poll() calls share it
- a terminal job is never polled again, and a response that lands after the
  job went terminal is discarded
- transport errors and remote rejections during a poll count as "still pending"
- cancellation is cooperative: it stops future polls, it never aborts a call
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Callable, Dict, Optional

from txflow.settings import settings
from txflow.core.errors import TxFlowError, RemoteRejectedError, SubmissionError, ResultMissingError
from txflow.core.extraction import extract_status, extract_result_url, extract_error_message
from txflow.core.state_machine import (
    JOB_PENDING,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_TIMED_OUT,
    JOB_UNKNOWN,
)
from txflow.remote.backends import JobBackend
from txflow.store.models import Job
from txflow.utils.time import now_ms
from txflow.observability.logging import log

UpdateHook = Callable[[Job], Any]


async def _maybe_await(value) -> None:
    if inspect.isawaitable(value):
        await value


class JobStatusPoller:
    def __init__(
        self,
        backend: JobBackend,
        *,
        interval_sec: Optional[float] = None,
        max_attempts: Optional[int] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.backend = backend
        self.interval_sec = float(settings.POLL_INTERVAL_SEC if interval_sec is None else interval_sec)
        self.max_attempts = int(settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts)
        self.timeout_sec = float(settings.POLL_TIMEOUT_SEC if timeout_sec is None else timeout_sec)

        self._inflight: Dict[str, asyncio.Future] = {}
        self._stop: Dict[str, asyncio.Event] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    async def start(self, request: Any = None) -> Job:
        try:
            data = await self.backend.submit(request)
        except RemoteRejectedError as e:
            log(event="job_submit_rejected", reason=e.message, statusCode=e.status_code)
            raise SubmissionError(e.message, status_code=e.status_code, payload=e.payload) from e

        if not data.get("jobId"):
            log(event="job_submit_missing_id", payload=data)
            raise SubmissionError("The job was not accepted (no job id returned).")

        job = Job(
            queueName=str(data.get("queueName") or ""),
            jobId=str(data["jobId"]),
            state=JOB_PENDING,
            startedAtMs=now_ms(),
        )
        log(event="job_submitted", queueName=job.queueName, jobId=job.jobId)
        return job

    async def poll(self, job: Job) -> Job:
        """One status check. Concurrent callers for the same job share a single request."""
        if job.terminal:
            return job

        key = job.key
        fut = self._inflight.get(key)
        if fut is None:
            fut = asyncio.ensure_future(self._poll_once(job))
            self._inflight[key] = fut
            fut.add_done_callback(lambda _f, k=key: self._inflight.pop(k, None))
        return await asyncio.shield(fut)

    async def _poll_once(self, job: Job) -> Job:
        job.attempts += 1
        job.lastPolledAtMs = now_ms()

        try:
            payload = await self.backend.status(job)
        except TxFlowError as e:
            # Availability over fast-fail: a failed check is just another pending answer
            if job.state == JOB_UNKNOWN:
                job.state = JOB_PENDING
            log(
                event="job_poll_error",
                jobId=job.jobId,
                attempt=job.attempts,
                errorType=type(e).__name__,
                error=str(e)[:200],
            )
            return job

        if job.terminal:
            log(event="job_poll_discarded", jobId=job.jobId, state=job.state)
            return job

        state = extract_status(payload)

        if state == JOB_COMPLETED:
            job.state = JOB_COMPLETED
            url = extract_result_url(payload)
            if not url:
                job.errorMessage = "result_missing"
                log(event="job_result_missing", jobId=job.jobId, attempt=job.attempts)
                raise ResultMissingError()
            job.resultUrl = url
            log(event="job_completed", jobId=job.jobId, attempt=job.attempts, resultUrl=url)
        elif state == JOB_FAILED:
            job.state = JOB_FAILED
            job.errorMessage = extract_error_message(payload)
            log(event="job_failed", jobId=job.jobId, attempt=job.attempts, reason=job.errorMessage)
        else:
            job.state = JOB_PENDING
            log(event="job_poll_pending", jobId=job.jobId, attempt=job.attempts)

        return job

    def _time_out(self, job: Job, reason: str) -> None:
        job.state = JOB_TIMED_OUT
        job.errorMessage = reason
        log(event="job_timed_out", jobId=job.jobId, attempts=job.attempts, reason=reason)

    async def run(self, job: Job, *, on_update: Optional[UpdateHook] = None) -> Job:
        """Poll immediately, then every interval, until terminal or cancelled."""
        stop = self._stop.setdefault(job.key, asyncio.Event())
        deadline = time.monotonic() + self.timeout_sec if self.timeout_sec > 0 else None

        try:
            while not job.terminal:
                if stop.is_set():
                    log(event="job_poll_cancelled", jobId=job.jobId, attempts=job.attempts)
                    break

                await self.poll(job)
                if on_update is not None:
                    await _maybe_await(on_update(job))
                if job.terminal:
                    break

                if self.max_attempts > 0 and job.attempts >= self.max_attempts:
                    self._time_out(job, "max_attempts_reached")
                    break

                wait = self.interval_sec
                if deadline is not None:
                    wait = min(wait, max(0.0, deadline - time.monotonic()))
                try:
                    await asyncio.wait_for(stop.wait(), timeout=wait)
                except asyncio.TimeoutError:
                    pass

                if deadline is not None and time.monotonic() >= deadline and not stop.is_set():
                    self._time_out(job, "poll_timeout")
                    break
        finally:
            if self._stop.get(job.key) is stop:
                del self._stop[job.key]

        if job.state == JOB_TIMED_OUT and on_update is not None:
            await _maybe_await(on_update(job))
        return job

    def watch(self, job: Job, *, on_update: Optional[UpdateHook] = None) -> asyncio.Task:
        """Run the poll loop as a background task owned by this poller."""
        task = self._tasks.get(job.key)
        if task is not None and not task.done():
            return task
        task = asyncio.ensure_future(self.run(job, on_update=on_update))
        self._tasks[job.key] = task
        task.add_done_callback(lambda _t, k=job.key: self._tasks.pop(k, None))
        return task

    def cancel(self, job: Job) -> None:
        """Stop scheduling polls for this job. An in-flight status call is allowed to finish."""
        stop = self._stop.get(job.key)
        if stop is None and job.key in self._tasks:
            # watch() scheduled the loop but it has not started yet
            stop = self._stop.setdefault(job.key, asyncio.Event())
        if stop is not None:
            stop.set()

    def cancel_all(self) -> None:
        for key in list(self._tasks.keys()):
            self._stop.setdefault(key, asyncio.Event())
        for stop in list(self._stop.values()):
            stop.set()
