import pytest
from pydantic import ValidationError

from txflow.api.schemas import TransferRequest, OtpInitiateData, TransactionResult


def test_transfer_amount_parsed_from_text():
    req = TransferRequest(destinationAccountNumber="0123", amount=" 150000 ")
    assert req.amount == 150000
    assert req.to_payload() == {
        "destinationAccountNumber": "0123",
        "amount": 150000,
        "description": "",
        "transactionType": "REAL",
    }

@pytest.mark.parametrize("amount", ["0", "-5", 0])
def test_transfer_amount_must_be_positive(amount):
    with pytest.raises(ValidationError):
        TransferRequest(destinationAccountNumber="0123", amount=amount)

def test_transfer_type_is_restricted():
    with pytest.raises(ValidationError):
        TransferRequest(destinationAccountNumber="0123", amount=1, transactionType="GIFT")

def test_initiate_data_accepts_transfer_field_names():
    info = OtpInitiateData.from_payload({"tempTransactionId": 991, "phoneNumber": "0912345678", "expireInSeconds": "120"})
    assert info.transactionHandle == "991"
    assert info.expireInSeconds == 120

def test_initiate_data_tolerates_bad_expiry():
    info = OtpInitiateData.from_payload({"requestId": "r1", "phone_number": "0912345678", "expireInSeconds": "soon"})
    assert info.transactionHandle == "r1"
    assert info.phoneNumber == "0912345678"
    assert info.expireInSeconds is None

def test_transaction_result_keeps_extra_fields():
    result = TransactionResult.model_validate({"transactionId": 5, "amount": 1000, "bankName": "ACB"})
    assert result.transactionId == "5"
    assert result.amount == "1000"
    assert result.model_extra["bankName"] == "ACB"
