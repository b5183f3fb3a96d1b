"""
OtpGatedTransaction
-------------------
initiate -> (resend)* -> verify(code), with at most one successful verify per
initiation.

The re-entrancy guard is the challenge state itself: verify() moves
INITIATED -> VERIFYING in one step before the first await, so a second call
(double tap, retried coroutine) sees VERIFYING and is rejected without a
remote call. A rejected code moves it back to INITIATED; success moves it to
VERIFIED and nothing moves it out again.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, Dict, List, Optional

from txflow.settings import settings
from txflow.api.schemas import OtpInitiateData, TransactionResult
from txflow.core.errors import (
    RemoteRejectedError,
    InitiationError,
    ResendError,
    VerificationRejectedError,
    DuplicateAttemptError,
    InvalidCodeError,
    ChallengeClosedError,
    ChallengeExpiredError,
)
from txflow.core.state_machine import (
    CHALLENGE_CREATED,
    CHALLENGE_INITIATED,
    CHALLENGE_VERIFYING,
    CHALLENGE_VERIFIED,
    CHALLENGE_EXPIRED,
    CHALLENGE_CANCELLED,
    is_challenge_terminal,
)
from txflow.remote.backends import OtpBackend
from txflow.store.models import OtpChallenge
from txflow.utils.masking import mask_phone_number, looks_masked
from txflow.utils.time import now_ms, expires_at_ms, seconds_until
from txflow.observability.logging import log

VerifiedHook = Callable[[OtpChallenge, TransactionResult], Any]


def _masked(info: OtpInitiateData) -> str:
    if info.phoneNumberMasked:
        return info.phoneNumberMasked
    if info.phoneNumber:
        return info.phoneNumber if looks_masked(info.phoneNumber) else mask_phone_number(info.phoneNumber)
    return ""


class OtpGatedTransaction:
    def __init__(
        self,
        backend: OtpBackend,
        *,
        code_length: Optional[int] = None,
        resend_cooldown_sec: Optional[int] = None,
        default_expire_sec: Optional[int] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.code_length = int(settings.OTP_CODE_LENGTH if code_length is None else code_length)
        self.resend_cooldown_sec = int(settings.OTP_RESEND_COOLDOWN_SEC if resend_cooldown_sec is None else resend_cooldown_sec)
        self.default_expire_sec = int(settings.OTP_DEFAULT_EXPIRE_SEC if default_expire_sec is None else default_expire_sec)
        self.clock = clock
        self._hooks: List[VerifiedHook] = []

    def on_verified(self, hook: VerifiedHook) -> None:
        self._hooks.append(hook)

    # ---- state helpers ----------------------------------------------------------

    @staticmethod
    def _transition(challenge: OtpChallenge, expected: str, new: str) -> bool:
        # No await between the check and the write: atomic on the event loop
        if challenge.state != expected:
            return False
        challenge.state = new
        return True

    def _expire_if_due(self, challenge: OtpChallenge) -> bool:
        if challenge.state == CHALLENGE_INITIATED and challenge.expiresAtMs and self.clock() >= challenge.expiresAtMs:
            challenge.state = CHALLENGE_EXPIRED
            log(event="otp_challenge_expired", flow=challenge.flow, handle=challenge.transactionHandle)
        return challenge.state == CHALLENGE_EXPIRED

    def _ensure_open(self, challenge: OtpChallenge) -> None:
        if challenge.attemptInFlight:
            raise DuplicateAttemptError()
        if challenge.verified or challenge.state == CHALLENGE_VERIFIED:
            raise DuplicateAttemptError("This transaction has already been verified.")
        if self._expire_if_due(challenge):
            raise ChallengeExpiredError()
        if challenge.state != CHALLENGE_INITIATED:
            raise ChallengeClosedError()

    def seconds_until_expiry(self, challenge: OtpChallenge) -> int:
        return seconds_until(challenge.expiresAtMs, at_ms=self.clock())

    def seconds_until_resend(self, challenge: OtpChallenge) -> int:
        return seconds_until(challenge.resendAvailableAtMs, at_ms=self.clock())

    def is_expired(self, challenge: OtpChallenge) -> bool:
        return self._expire_if_due(challenge)

    # ---- protocol -----------------------------------------------------------------

    async def initiate(self, request: Any = None) -> OtpChallenge:
        challenge = OtpChallenge(flow=self.backend.flow, state=CHALLENGE_CREATED)
        try:
            data = await self.backend.initiate(request)
        except RemoteRejectedError as e:
            # e.g. self-transfer, insufficient balance: remote wording goes to the user as is
            log(event="otp_initiate_rejected", flow=challenge.flow, reason=e.message, statusCode=e.status_code)
            raise InitiationError(e.message, status_code=e.status_code, payload=e.payload) from e

        info = OtpInitiateData.from_payload(data)
        if not info.transactionHandle:
            log(event="otp_initiate_missing_handle", flow=challenge.flow)
            raise InitiationError("The transaction could not be started (no handle returned).")

        started = self.clock()
        challenge.transactionHandle = info.transactionHandle
        challenge.expiresAtMs = expires_at_ms(info.expireInSeconds, default=self.default_expire_sec, start_ms=started)
        challenge.resendAvailableAtMs = started + self.resend_cooldown_sec * 1000
        challenge.phoneNumberMasked = _masked(info)
        challenge.state = CHALLENGE_INITIATED

        log(
            event="otp_initiated",
            flow=challenge.flow,
            handle=challenge.transactionHandle,
            expiresInSec=self.seconds_until_expiry(challenge),
            phoneNumberMasked=challenge.phoneNumberMasked,
        )
        return challenge

    async def verify(
        self,
        challenge: OtpChallenge,
        code: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> TransactionResult:
        self._ensure_open(challenge)

        code = (code or "").strip()
        if len(code) != self.code_length or not code.isdigit():
            raise InvalidCodeError(f"Please enter the {self.code_length}-digit code.")
        if challenge.lastRejectedCode == code:
            raise DuplicateAttemptError("This code was already rejected.")

        if not self._transition(challenge, CHALLENGE_INITIATED, CHALLENGE_VERIFYING):
            raise DuplicateAttemptError()
        challenge.verifyAttempts += 1
        log(event="otp_verify_attempt", flow=challenge.flow, handle=challenge.transactionHandle, attempt=challenge.verifyAttempts)

        try:
            data = await self.backend.verify(challenge.transactionHandle, code, context)
        except RemoteRejectedError as e:
            self._transition(challenge, CHALLENGE_VERIFYING, CHALLENGE_INITIATED)
            challenge.lastRejectedCode = code
            log(event="otp_verify_rejected", flow=challenge.flow, handle=challenge.transactionHandle, reason=e.message)
            raise VerificationRejectedError(e.message, status_code=e.status_code, payload=e.payload) from e
        except BaseException as e:
            # Transport failure, bad context, task cancellation: the code may be tried again
            self._transition(challenge, CHALLENGE_VERIFYING, CHALLENGE_INITIATED)
            log(event="otp_verify_error", flow=challenge.flow, handle=challenge.transactionHandle, errorType=type(e).__name__)
            raise

        # Remote success is authoritative even if the owner cancelled meanwhile
        challenge.state = CHALLENGE_VERIFIED
        challenge.verified = True
        challenge.lastRejectedCode = None
        result = self.backend.to_result(data)
        log(
            event="otp_verified",
            flow=challenge.flow,
            handle=challenge.transactionHandle,
            transactionId=result.transactionId,
            status=result.status,
        )
        await self._notify(challenge, result)
        return result

    async def resend(self, challenge: OtpChallenge) -> OtpChallenge:
        """Send a new code. Refused (DuplicateAttemptError) while a verify is in flight; the flag is released by verify itself."""
        self._ensure_open(challenge)

        wait = self.seconds_until_resend(challenge)
        if wait > 0:
            raise ResendError(f"Please wait {wait}s before requesting a new code.")

        try:
            data = await self.backend.resend(challenge.transactionHandle)
        except RemoteRejectedError as e:
            log(event="otp_resend_rejected", flow=challenge.flow, handle=challenge.transactionHandle, reason=e.message)
            raise ResendError(e.message, status_code=e.status_code, payload=e.payload) from e

        if isinstance(data, dict) and data.get("success") is False:
            raise ResendError(str(data.get("message") or "") or None)

        now = self.clock()
        info = OtpInitiateData.from_payload(data if isinstance(data, dict) else {})
        # Only a remote-issued window moves the expiry; the code already sent stays valid otherwise
        if info.expireInSeconds and info.expireInSeconds > 0:
            challenge.expiresAtMs = expires_at_ms(info.expireInSeconds, default=self.default_expire_sec, start_ms=now)
        masked = _masked(info)
        if masked:
            challenge.phoneNumberMasked = masked
        challenge.resendAvailableAtMs = now + self.resend_cooldown_sec * 1000
        challenge.resendCount += 1
        challenge.lastRejectedCode = None

        log(event="otp_resent", flow=challenge.flow, handle=challenge.transactionHandle, resendCount=challenge.resendCount)
        return challenge

    def cancel(self, challenge: OtpChallenge) -> None:
        if is_challenge_terminal(challenge.state):
            return
        challenge.state = CHALLENGE_CANCELLED
        log(event="otp_challenge_cancelled", flow=challenge.flow, handle=challenge.transactionHandle)

    async def _notify(self, challenge: OtpChallenge, result: TransactionResult) -> None:
        for hook in list(self._hooks):
            try:
                out = hook(challenge, result)
                if inspect.isawaitable(out):
                    await out
            except Exception as e:
                # The transaction already went through; a stale cache must not turn it into a failure
                log(event="post_verify_hook_failed", flow=challenge.flow, errorType=type(e).__name__, error=str(e)[:200])
