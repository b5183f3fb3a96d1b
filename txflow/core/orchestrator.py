"""
Workflow sessions
-----------------
Composition root for the product flows:

  contract signing: generate job -> poll -> download unsigned PDF
                    -> request OTP -> sign(code, signature) -> download signed PDF
  money transfer:   initiate -> OTP -> confirm(code) -> invalidate cached data
                    -> (optional) download receipt

A session exclusively owns its Job, OtpChallenge and Artifacts. close() is the
single release point and runs on every exit path (use `async with`): poll
schedules stop, open challenges are cancelled, downloaded files are deleted,
owned HTTP clients are closed and the persisted snapshot is removed.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import uuid
from typing import Any, Callable, List, Optional, Set, Tuple

from txflow.settings import settings
from txflow.api.schemas import TransferRequest, TransactionResult
from txflow.core.account import AccountContext
from txflow.core.downloader import ArtifactDownloader, ProgressHook
from txflow.core.errors import (
    DuplicateAttemptError,
    IntegrityError,
    JobFailedError,
    PollTimeoutError,
    ResultMissingError,
    WorkflowClosedError,
)
from txflow.core.otp import OtpGatedTransaction
from txflow.core.poller import JobStatusPoller
from txflow.core.state_machine import (
    ARTIFACT_READY,
    CHALLENGE_INITIATED,
    CHALLENGE_VERIFIED,
    CHALLENGE_VERIFYING,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_TIMED_OUT,
)
from txflow.remote.backends import EcontractJobBackend, EcontractOtpBackend, TransferOtpBackend
from txflow.remote.client import RemoteOperationClient
from txflow.store import session_repo
from txflow.store.models import Artifact, Job, OtpChallenge, WorkflowSnapshot
from txflow.observability.logging import log

# Cached data that goes stale once money has moved
INVALIDATION_KEYS = (("transaction", "list"), ("bank",), ("notifications",))

InvalidationHook = Callable[[Tuple[str, ...]], Any]


async def _maybe_await(value) -> None:
    if inspect.isawaitable(value):
        await value


class WorkflowSession:
    flow = ""

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        client: Optional[RemoteOperationClient] = None,
        downloader: Optional[ArtifactDownloader] = None,
        account: Optional[AccountContext] = None,
        persist: Optional[bool] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.persist = settings.SESSION_STORE_ENABLED if persist is None else persist

        self._owns_client = client is None
        self.client = client or RemoteOperationClient()
        self._owns_downloader = downloader is None
        self.downloader = downloader or ArtifactDownloader()
        self.account = account or AccountContext(persist=self.persist)

        self.snapshot = WorkflowSnapshot(sessionId=self.session_id, flow=self.flow)
        self._pollers: List[JobStatusPoller] = []
        self._transactions: List[OtpGatedTransaction] = []
        self._fetches: Set[asyncio.Future] = set()
        self._closed = False

    async def __aenter__(self):
        await self.restore()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise WorkflowClosedError()

    # ---- persistence --------------------------------------------------------------

    async def restore(self) -> bool:
        """Pick up a snapshot left by an earlier instance of this session, if any."""
        if not self.persist:
            return False
        try:
            snap = await session_repo.load_snapshot(self.session_id)
        except Exception as e:
            log(event="snapshot_load_failed", sessionId=self.session_id, errorType=type(e).__name__, error=str(e)[:200])
            return False
        if snap is None or (snap.flow and snap.flow != self.flow):
            return False
        self.snapshot = snap
        log(
            event="workflow_restored",
            sessionId=self.session_id,
            flow=self.flow,
            jobState=snap.job.state if snap.job else None,
            challengeState=snap.challenge.state if snap.challenge else None,
        )
        return True

    async def checkpoint(self) -> None:
        if not self.persist or self._closed:
            return
        try:
            await session_repo.save_snapshot(self.snapshot)
        except Exception as e:
            log(event="snapshot_save_failed", sessionId=self.session_id, errorType=type(e).__name__, error=str(e)[:200])

    # ---- artifacts ----------------------------------------------------------------

    def _track(self, artifact: Artifact) -> None:
        if all(a is not artifact for a in self.snapshot.artifacts):
            self.snapshot.artifacts.append(artifact)

    async def fetch_artifact(self, url: str, *, on_progress: Optional[ProgressHook] = None) -> Artifact:
        self._ensure_open()
        for existing in self.snapshot.artifacts:
            if existing.remoteUrl == url and existing.status == ARTIFACT_READY and os.path.exists(existing.localPath):
                return existing
        fetch = asyncio.ensure_future(self.downloader.fetch(url, on_progress=on_progress))
        self._fetches.add(fetch)
        fetch.add_done_callback(self._fetches.discard)
        try:
            artifact = await asyncio.shield(fetch)
        except IntegrityError as e:
            self._track(e.artifact)
            await self.checkpoint()
            raise

        if self._closed:
            # close() ran while the bytes were in flight
            await self.downloader.dispose(artifact)
            raise WorkflowClosedError()
        self._track(artifact)
        await self.checkpoint()
        return artifact

    # ---- release ------------------------------------------------------------------

    async def _drain_fetches(self) -> None:
        """Wait for downloads started by this session and delete whatever they produced."""
        pending = list(self._fetches)
        if not pending:
            return
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Artifact):
                await self.downloader.dispose(result)
            elif isinstance(result, IntegrityError):
                await self.downloader.dispose(result.artifact)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        for poller in self._pollers:
            poller.cancel_all()
        challenge = self.snapshot.challenge
        if challenge is not None:
            for tx in self._transactions:
                tx.cancel(challenge)

        try:
            await self._drain_fetches()
            for artifact in list(self.snapshot.artifacts):
                await self.downloader.dispose(artifact)
            if self._owns_downloader:
                await self.downloader.aclose()
        finally:
            try:
                if self._owns_client:
                    await self.client.aclose()
            finally:
                if self.persist:
                    try:
                        await session_repo.delete_snapshot(self.session_id)
                    except Exception as e:
                        log(event="snapshot_delete_failed", sessionId=self.session_id, errorType=type(e).__name__)
                log(event="workflow_closed", sessionId=self.session_id, flow=self.flow)


class ContractSigningWorkflow(WorkflowSession):
    flow = "econtract"

    def __init__(
        self,
        session_id: Optional[str] = None,
        *,
        poll_interval_sec: Optional[float] = None,
        poll_max_attempts: Optional[int] = None,
        poll_timeout_sec: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(session_id, **kwargs)
        self.poller = JobStatusPoller(
            EcontractJobBackend(self.client),
            interval_sec=poll_interval_sec,
            max_attempts=poll_max_attempts,
            timeout_sec=poll_timeout_sec,
        )
        self.signing = OtpGatedTransaction(EcontractOtpBackend(self.client))
        self._pollers.append(self.poller)
        self._transactions.append(self.signing)

    @property
    def job(self) -> Optional[Job]:
        return self.snapshot.job

    async def generate_contract(
        self,
        *,
        on_status: Optional[Callable[[Job], Any]] = None,
        on_progress: Optional[ProgressHook] = None,
    ) -> Artifact:
        """Generate (or resume) the contract job and download the unsigned PDF."""
        self._ensure_open()

        job = self.snapshot.job
        if job is None or job.state in (JOB_FAILED, JOB_TIMED_OUT):
            job = await self.poller.start()
            self.snapshot.job = job
            await self.checkpoint()
        else:
            log(event="job_resumed", sessionId=self.session_id, jobId=job.jobId, state=job.state)

        async def _update(j: Job) -> None:
            await self.checkpoint()
            if on_status is not None:
                await _maybe_await(on_status(j))

        try:
            await self.poller.run(job, on_update=_update)
        except ResultMissingError:
            await self.checkpoint()
            raise

        if job.state == JOB_COMPLETED and not job.resultUrl:
            # Completed without a file is a dead end, for a resumed job too
            raise ResultMissingError()
        if job.state == JOB_FAILED:
            raise JobFailedError(job.errorMessage)
        if job.state == JOB_TIMED_OUT:
            raise PollTimeoutError()
        if job.state != JOB_COMPLETED:
            # Polling stopped by close()
            raise WorkflowClosedError()

        return await self.fetch_artifact(job.resultUrl, on_progress=on_progress)

    async def request_signing_otp(self) -> OtpChallenge:
        self._ensure_open()
        challenge = self.snapshot.challenge
        if challenge is not None and (challenge.verified or challenge.state in (CHALLENGE_VERIFIED, CHALLENGE_VERIFYING)):
            raise DuplicateAttemptError("This contract has already been signed.")
        if challenge is not None and challenge.state == CHALLENGE_INITIATED and not self.signing.is_expired(challenge):
            # Remount: the code already sent is still valid, do not send another
            return challenge
        challenge = await self.signing.initiate()
        self.snapshot.challenge = challenge
        await self.checkpoint()
        return challenge

    async def resend_otp(self, challenge: OtpChallenge) -> OtpChallenge:
        self._ensure_open()
        try:
            return await self.signing.resend(challenge)
        finally:
            await self.checkpoint()

    async def sign(
        self,
        challenge: OtpChallenge,
        code: str,
        signature_base64: str,
        *,
        on_progress: Optional[ProgressHook] = None,
    ) -> Tuple[TransactionResult, Optional[Artifact]]:
        self._ensure_open()
        try:
            result = await self.signing.verify(challenge, code, {"signature_base64": signature_base64})
        finally:
            await self.checkpoint()

        signed = None
        if result.artifactUrl:
            signed = await self.fetch_artifact(result.artifactUrl, on_progress=on_progress)
        return result, signed


class TransferWorkflow(WorkflowSession):
    flow = "transfer"

    def __init__(self, session_id: Optional[str] = None, **kwargs):
        super().__init__(session_id, **kwargs)
        self.transfer = OtpGatedTransaction(TransferOtpBackend(self.client, self.account))
        self._transactions.append(self.transfer)
        self._invalidation_hooks: List[InvalidationHook] = []
        self.transfer.on_verified(self._invalidate)

    def on_invalidate(self, hook: InvalidationHook) -> None:
        self._invalidation_hooks.append(hook)

    async def _invalidate(self, challenge: OtpChallenge, result: TransactionResult) -> None:
        for hook in list(self._invalidation_hooks):
            for key in INVALIDATION_KEYS:
                await _maybe_await(hook(key))
        log(event="transfer_cache_invalidated", sessionId=self.session_id, transactionId=result.transactionId)

    async def initiate(self, request) -> OtpChallenge:
        """
        Start the transfer, or hand back the challenge a remounted session already holds.
        A transfer that was verified (or whose verify was in flight) is never started again.
        """
        self._ensure_open()
        challenge = self.snapshot.challenge
        if challenge is not None:
            if challenge.verified or challenge.state in (CHALLENGE_VERIFIED, CHALLENGE_VERIFYING):
                log(event="transfer_already_submitted", sessionId=self.session_id, handle=challenge.transactionHandle)
                raise DuplicateAttemptError("This transfer has already been submitted.")
            if challenge.state == CHALLENGE_INITIATED and not self.transfer.is_expired(challenge):
                return challenge

        if not isinstance(request, TransferRequest):
            request = TransferRequest.model_validate(request)
        challenge = await self.transfer.initiate(request)
        self.snapshot.challenge = challenge
        await self.checkpoint()
        return challenge

    async def resend_otp(self, challenge: OtpChallenge) -> OtpChallenge:
        self._ensure_open()
        try:
            return await self.transfer.resend(challenge)
        finally:
            await self.checkpoint()

    async def confirm(self, challenge: OtpChallenge, code: str) -> TransactionResult:
        self._ensure_open()
        try:
            return await self.transfer.verify(challenge, code)
        finally:
            await self.checkpoint()

    async def fetch_receipt(self, result: TransactionResult, *, on_progress: Optional[ProgressHook] = None) -> Optional[Artifact]:
        if not result.artifactUrl:
            return None
        return await self.fetch_artifact(result.artifactUrl, on_progress=on_progress)
