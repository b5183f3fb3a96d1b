from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from txflow.core.state_machine import (
    JOB_UNKNOWN,
    CHALLENGE_CREATED,
    CHALLENGE_VERIFYING,
    ARTIFACT_DOWNLOADING,
    is_job_terminal,
)

@dataclass
class Job:
    # Identity (issued by the "start job" call)
    queueName: str = ""
    jobId: str = ""

    state: str = JOB_UNKNOWN
    resultUrl: Optional[str] = None      # only when COMPLETED
    errorMessage: Optional[str] = None   # only when FAILED / TIMED_OUT

    # Poll bookkeeping
    attempts: int = 0
    startedAtMs: int = 0
    lastPolledAtMs: int = 0

    @property
    def key(self) -> str:
        return f"{self.queueName}:{self.jobId}"

    @property
    def terminal(self) -> bool:
        return is_job_terminal(self.state)


@dataclass
class OtpChallenge:
    # Opaque handle issued by the remote system at initiation
    transactionHandle: str = ""
    flow: str = ""

    state: str = CHALLENGE_CREATED
    verified: bool = False

    expiresAtMs: int = 0
    resendAvailableAtMs: int = 0
    phoneNumberMasked: str = ""

    # Counters (observability / UI)
    verifyAttempts: int = 0
    resendCount: int = 0

    # Code the remote rejected last; cleared on resend
    lastRejectedCode: Optional[str] = None

    @property
    def attemptInFlight(self) -> bool:
        return self.state == CHALLENGE_VERIFYING


@dataclass
class Artifact:
    remoteUrl: str = ""
    localPath: str = ""
    sizeBytes: int = 0
    status: str = ARTIFACT_DOWNLOADING
    contentType: str = ""


@dataclass
class WorkflowSnapshot:
    """Everything a remounted workflow needs to pick up where it left off."""
    sessionId: str = ""
    flow: str = ""
    job: Optional[Job] = None
    challenge: Optional[OtpChallenge] = None
    artifacts: List[Artifact] = field(default_factory=list)
    lastUpdatedAtEpoch: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)
