from typing import Any, Dict, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

TransactionType = Literal["REAL", "CREDIT"]
AccountType = Literal["USER", "STORE"]

class TransferRequest(BaseModel):
    destinationAccountNumber: str = Field(min_length=1)
    amount: int = Field(gt=0)
    description: str = ""
    transactionType: TransactionType = "REAL"
    orderId: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_from_text(cls, v):
        # Amount inputs arrive as text ("150000"); parse as a base-10 integer
        if isinstance(v, str):
            return int(v.strip(), 10)
        return v

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

class OtpInitiateData(BaseModel):
    """Initiate response after envelope unwrapping. Tolerates the transfer API's field names."""
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    transactionHandle: str = ""
    phoneNumber: str = ""
    phoneNumberMasked: str = ""
    expireInSeconds: Optional[int] = None

    @field_validator("expireInSeconds", mode="before")
    @classmethod
    def _lenient_seconds(cls, v):
        try:
            return int(float(v))
        except (TypeError, ValueError):
            return None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "OtpInitiateData":
        data = dict(data or {})
        handle = (
            data.get("transactionHandle")
            or data.get("tempTransactionId")
            or data.get("requestId")
            or ""
        )
        phone = data.get("phoneNumber") or data.get("phone_number") or ""
        data["transactionHandle"] = str(handle)
        data["phoneNumber"] = str(phone)
        data["phoneNumberMasked"] = str(data.get("phoneNumberMasked") or "")
        return cls.model_validate(data)

class TransactionResult(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    transactionId: str = ""
    transactionCode: str = ""
    status: str = ""
    amount: Optional[str] = None
    description: Optional[str] = None
    sourceAccountNumber: Optional[str] = None
    destinationAccountNumber: Optional[str] = None
    artifactUrl: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_as_text(cls, v):
        return None if v is None else str(v)
