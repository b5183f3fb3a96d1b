# State constants for the three workflow entities.

# Job (remote asynchronous unit of work)
# UNKNOWN is the state before the first poll answer arrives.
JOB_UNKNOWN = "UNKNOWN"
JOB_PENDING = "PENDING"
JOB_COMPLETED = "COMPLETED"
JOB_FAILED = "FAILED"
# Safety net: max attempts / overall timeout reached while still pending
JOB_TIMED_OUT = "TIMED_OUT"

JOB_TERMINAL = frozenset({JOB_COMPLETED, JOB_FAILED, JOB_TIMED_OUT})


# OtpChallenge
# CREATED -> INITIATED -> VERIFYING -> VERIFIED
#                      \-> VERIFYING -> INITIATED (code rejected, retriable)
# INITIATED -> EXPIRED | CANCELLED
CHALLENGE_CREATED = "CREATED"
CHALLENGE_INITIATED = "INITIATED"
CHALLENGE_VERIFYING = "VERIFYING"
CHALLENGE_VERIFIED = "VERIFIED"
CHALLENGE_EXPIRED = "EXPIRED"
CHALLENGE_CANCELLED = "CANCELLED"

CHALLENGE_TERMINAL = frozenset({CHALLENGE_VERIFIED, CHALLENGE_EXPIRED, CHALLENGE_CANCELLED})


# Artifact (downloaded file)
ARTIFACT_DOWNLOADING = "DOWNLOADING"
ARTIFACT_READY = "READY"
ARTIFACT_INVALID = "INVALID"
ARTIFACT_DELETED = "DELETED"


def is_job_terminal(state: str) -> bool:
    return state in JOB_TERMINAL


def is_challenge_terminal(state: str) -> bool:
    return state in CHALLENGE_TERMINAL
