import json
import pytest
import httpx

from txflow.remote.client import RemoteOperationClient
from txflow.remote.backends import EcontractJobBackend, EcontractOtpBackend, TransferOtpBackend
from txflow.core.account import AccountContext
from txflow.core.errors import RemoteRejectedError
from txflow.settings import settings
from txflow.store.models import Job


class Recorder:
    """MockTransport handler answering by path, recording every request."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        answer = self.routes[request.url.path]
        if callable(answer):
            return answer(request)
        return httpx.Response(200, json=answer)


def make_client(routes):
    rec = Recorder(routes)
    return RemoteOperationClient("https://api.example.com", transport=httpx.MockTransport(rec)), rec


@pytest.mark.anyio
async def test_job_submit_maps_snake_case_ids():
    client, _ = make_client({settings.JOB_SUBMIT_PATH: {"success": True, "data": {"queue_name": "pdf", "job_id": 42}}})
    data = await EcontractJobBackend(client).submit()
    assert data == {"queueName": "pdf", "jobId": "42"}

@pytest.mark.anyio
async def test_job_status_sends_queue_and_job_id():
    client, rec = make_client({settings.JOB_STATUS_PATH: {"status": "pending"}})
    await EcontractJobBackend(client).status(Job(queueName="pdf", jobId="42"))
    assert dict(rec.requests[0].url.params) == {"queue_name": "pdf", "job_id": "42"}

@pytest.mark.anyio
async def test_transfer_calls_carry_account_type():
    client, rec = make_client({
        settings.TRANSFER_INITIATE_PATH: {"success": True, "data": {"tempTransactionId": "T1"}},
        settings.TRANSFER_VERIFY_PATH: {"success": True, "data": {"transactionId": "TX9"}},
    })
    backend = TransferOtpBackend(client, AccountContext("store", persist=False))

    await backend.initiate({"destinationAccountNumber": "0123", "amount": "150000", "description": "rent"})
    await backend.verify("T1", "123456")

    initiate, verify = rec.requests
    assert initiate.url.params["bankType"] == "STORE"
    assert json.loads(initiate.content) == {
        "destinationAccountNumber": "0123",
        "amount": 150000,
        "description": "rent",
        "transactionType": "REAL",
    }
    assert verify.url.params["bankType"] == "STORE"
    assert json.loads(verify.content) == {"tempTransactionId": "T1", "otp": "123456"}

def test_transfer_result_picks_up_receipt_url():
    backend = TransferOtpBackend(None, AccountContext(persist=False))
    result = backend.to_result({"transactionId": "TX9", "receipt": {"file_url": "https://x/my receipt.pdf"}})
    assert result.artifactUrl == "https://x/my%20receipt.pdf"

@pytest.mark.anyio
async def test_econtract_initiate_mints_handle():
    client, _ = make_client({settings.ECONTRACT_OTP_REQUEST_PATH: {"success": True, "data": {"phone_number": "0912345678"}}})
    data = await EcontractOtpBackend(client).initiate()
    assert data["transactionHandle"]
    assert data["phone_number"] == "0912345678"

@pytest.mark.anyio
async def test_econtract_verify_requires_signature():
    client, rec = make_client({})
    with pytest.raises(ValueError):
        await EcontractOtpBackend(client).verify("h", "123456", {})
    assert rec.requests == []

@pytest.mark.anyio
async def test_econtract_verify_sends_signature():
    client, rec = make_client({settings.ECONTRACT_SIGN_PATH: {"success": True, "data": {}}})
    await EcontractOtpBackend(client).verify("h", "123456", {"signature_base64": "iVBORw0"})
    assert json.loads(rec.requests[0].content) == {"otp": "123456", "sign_base64": "iVBORw0"}

@pytest.mark.anyio
async def test_econtract_resend_falls_back_to_resend_endpoint():
    client, rec = make_client({
        settings.ECONTRACT_OTP_REQUEST_PATH: lambda request: httpx.Response(400, json={"message": "OTP already sent"}),
        settings.ECONTRACT_OTP_RESEND_PATH: {"success": True, "data": {"expireInSeconds": 300}},
    })
    data = await EcontractOtpBackend(client).resend("h")
    assert data == {"expireInSeconds": 300}
    assert [r.url.path for r in rec.requests] == [settings.ECONTRACT_OTP_REQUEST_PATH, settings.ECONTRACT_OTP_RESEND_PATH]

@pytest.mark.anyio
async def test_econtract_resend_surfaces_second_failure():
    reject = lambda request: httpx.Response(400, json={"message": "Too many OTP requests"})
    client, _ = make_client({
        settings.ECONTRACT_OTP_REQUEST_PATH: reject,
        settings.ECONTRACT_OTP_RESEND_PATH: reject,
    })
    with pytest.raises(RemoteRejectedError, match="Too many"):
        await EcontractOtpBackend(client).resend("h")

def test_econtract_result_uses_signed_file():
    backend = EcontractOtpBackend(None)
    result = backend.to_result({
        "contract_id": 7,
        "unsigned_file": {"file_url": "https://x/unsigned.pdf"},
        "signed_file": {"file_url": "https://x/signed.pdf"},
    })
    assert result.transactionId == "7"
    assert result.status == "signed"
    assert result.artifactUrl == "https://x/signed.pdf"
