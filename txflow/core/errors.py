"""
Error taxonomy
--------------
Components never talk to the user. They classify failures and let the
orchestrator's caller decide between a "retry" affordance (retryable=True)
and a "dead end, start over" one (retryable=False).
"""
from typing import Optional


class TxFlowError(Exception):
    retryable: bool = False
    default_message: str = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def user_message(self) -> str:
        return self.message


class TransportError(TxFlowError):
    """Network failure, timeout, 5xx or 429 from the remote system."""
    retryable = True
    default_message = "Network error. Please check your connection and try again."

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRejectedError(TxFlowError):
    """The remote system explicitly declined the request."""
    retryable = False
    default_message = "The request was declined."

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None, payload=None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class SubmissionError(RemoteRejectedError):
    default_message = "Could not create the document. Please try again later."


class InitiationError(RemoteRejectedError):
    default_message = "The transaction could not be started."


class ResendError(RemoteRejectedError):
    default_message = "Could not resend the code."


class VerificationRejectedError(RemoteRejectedError):
    # A new code may be entered
    retryable = True
    default_message = "Invalid code. Please try again."


class DuplicateAttemptError(TxFlowError):
    """Client-side guard; callers ignore it silently."""
    default_message = "A verification is already in progress."


class InvalidCodeError(TxFlowError):
    retryable = True
    default_message = "The code format is invalid."


class ChallengeClosedError(TxFlowError):
    default_message = "This verification is no longer active. Please start over."


class ChallengeExpiredError(ChallengeClosedError):
    default_message = "The code has expired. Please start over."


class JobFailedError(TxFlowError):
    default_message = "Processing failed. Please try again."


class ResultMissingError(TxFlowError):
    """Terminal success state without an extractable payload."""
    default_message = "The result file could not be found. Please start over."


class PollTimeoutError(TxFlowError):
    retryable = True
    default_message = "Processing is taking longer than expected. Please try again later."


class DownloadError(TxFlowError):
    retryable = True
    default_message = "Could not download the file. Please try again later."

    def __init__(self, url: str, message: Optional[str] = None, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class IntegrityError(TxFlowError):
    retryable = True
    default_message = "The downloaded file is invalid (0 bytes). Please try again later."

    def __init__(self, artifact, message: Optional[str] = None):
        super().__init__(message)
        self.artifact = artifact


class WorkflowClosedError(TxFlowError):
    """The owning workflow session was closed (user left the flow)."""
    default_message = "This flow was closed. Please start over."
