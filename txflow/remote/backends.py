"""
Product endpoint adapters
-------------------------
Each adapter knows one product's paths and payload field names and nothing
else: no state, no retries, no error translation beyond what
RemoteOperationClient already does. The generic engines (poller, OTP
transaction) drive them.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from txflow.settings import settings
from txflow.remote.client import RemoteOperationClient
from txflow.api.schemas import TransferRequest, TransactionResult
from txflow.core.account import AccountContext
from txflow.core.errors import TransportError, RemoteRejectedError
from txflow.core.extraction import dig, scan_file_url, normalize_url
from txflow.store.models import Job
from txflow.observability.logging import log


# ---- jobs ---------------------------------------------------------------------

class JobBackend:
    async def submit(self, request: Any = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def status(self, job: Job) -> Dict[str, Any]:
        raise NotImplementedError


class EcontractJobBackend(JobBackend):
    """Queued contract PDF generation."""

    def __init__(self, client: RemoteOperationClient):
        self.client = client

    async def submit(self, request: Any = None) -> Dict[str, Any]:
        data = await self.client.post(settings.JOB_SUBMIT_PATH)
        return {
            "queueName": str(data.get("queueName") or data.get("queue_name") or ""),
            "jobId": str(data.get("jobId") or data.get("job_id") or ""),
        }

    async def status(self, job: Job) -> Dict[str, Any]:
        return await self.client.get(
            settings.JOB_STATUS_PATH,
            params={"queue_name": job.queueName, "job_id": job.jobId},
        )


# ---- OTP-gated transactions -------------------------------------------------------

class OtpBackend:
    flow = ""

    async def initiate(self, request: Any = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def verify(self, handle: str, code: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        raise NotImplementedError

    async def resend(self, handle: str) -> Dict[str, Any]:
        raise NotImplementedError

    def to_result(self, data: Dict[str, Any]) -> TransactionResult:
        return TransactionResult.model_validate(data or {})


class TransferOtpBackend(OtpBackend):
    flow = "transfer"

    def __init__(self, client: RemoteOperationClient, account: AccountContext):
        self.client = client
        self.account = account

    async def _params(self) -> Dict[str, str]:
        return {"bankType": await self.account.get_account_type()}

    async def initiate(self, request: Any = None) -> Dict[str, Any]:
        if not isinstance(request, TransferRequest):
            request = TransferRequest.model_validate(request or {})
        return await self.client.post(
            settings.TRANSFER_INITIATE_PATH,
            json=request.to_payload(),
            params=await self._params(),
        )

    async def verify(self, handle: str, code: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.client.post(
            settings.TRANSFER_VERIFY_PATH,
            json={"tempTransactionId": handle, "otp": code},
            params=await self._params(),
        )

    async def resend(self, handle: str) -> Dict[str, Any]:
        return await self.client.post(
            settings.TRANSFER_RESEND_PATH,
            json={"tempTransactionId": handle},
            params=await self._params(),
        )

    def to_result(self, data: Dict[str, Any]) -> TransactionResult:
        data = dict(data or {})
        url = data.get("artifactUrl") or scan_file_url(data)
        data["artifactUrl"] = normalize_url(url) if url else None
        return TransactionResult.model_validate(data)


class EcontractOtpBackend(OtpBackend):
    """
    Contract signing. The remote tracks the pending signature per user, so the
    request-OTP answer carries no handle; a client-side one is minted instead.
    """
    flow = "econtract-signing"

    def __init__(self, client: RemoteOperationClient):
        self.client = client

    async def initiate(self, request: Any = None) -> Dict[str, Any]:
        data = dict(await self.client.post(settings.ECONTRACT_OTP_REQUEST_PATH))
        if not (data.get("transactionHandle") or data.get("requestId")):
            data["transactionHandle"] = uuid.uuid4().hex
        return data

    async def verify(self, handle: str, code: str, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        signature = (context or {}).get("signature_base64")
        if not signature:
            raise ValueError("Signature is required for contract signing")
        return await self.client.post(
            settings.ECONTRACT_SIGN_PATH,
            json={"otp": code, "sign_base64": signature},
        )

    async def resend(self, handle: str) -> Dict[str, Any]:
        # Request a fresh OTP first; older deployments only expose the resend endpoint
        try:
            return await self.client.post(settings.ECONTRACT_OTP_REQUEST_PATH)
        except (RemoteRejectedError, TransportError) as e:
            log(event="econtract_otp_request_fallback", errorType=type(e).__name__, error=str(e)[:200])
            return await self.client.post(settings.ECONTRACT_OTP_RESEND_PATH)

    def to_result(self, data: Dict[str, Any]) -> TransactionResult:
        data = dict(data or {})
        url = dig(data, ("signed_file", "file_url")) or scan_file_url(data)
        return TransactionResult.model_validate({
            **data,
            "transactionId": str(data.get("transactionId") or data.get("contract_id") or data.get("id") or ""),
            "transactionCode": str(data.get("transactionCode") or data.get("contract_code") or ""),
            "status": str(data.get("status") or "signed"),
            "artifactUrl": normalize_url(url) if isinstance(url, str) and url.strip() else None,
        })
