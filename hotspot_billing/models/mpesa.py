"""
M-Pesa gateway models - Immutable dataclasses for the STK push backend.

NO DICTIONARIES - All data uses strongly typed models.

Field names on the wire are kept in the provider's casing
(checkoutRequestID, ResultCode, ResultDesc); these models are the
only place that casing appears.
"""

from dataclasses import dataclass

SUCCESS_RESULT_CODE = "0"


@dataclass(frozen=True)
class StkPushRequest:
    """Body of POST {api_base_url}/stkpush."""

    phone: str
    amount: int
    account_number: str

    def to_payload(self) -> dict[str, str | int]:
        """Serialize to the JSON body expected by the backend."""
        return {
            "phone": self.phone,
            "amount": self.amount,
            "accountNumber": self.account_number,
        }


@dataclass(frozen=True)
class StkPushResponse:
    """Parsed STK push answer."""

    status: bool
    checkout_request_id: str | None
    message: str | None

    @classmethod
    def from_payload(cls, data: dict[str, object]) -> "StkPushResponse":
        checkout_request_id = data.get("checkoutRequestID")
        message = data.get("msg")
        return cls(
            status=data.get("status") is True,
            checkout_request_id=str(checkout_request_id) if checkout_request_id else None,
            message=str(message) if message else None,
        )


@dataclass(frozen=True)
class PaymentVerification:
    """Parsed answer of GET {api_base_url}/verify-payment?requestID=..."""

    status: bool
    result_code: str | None
    result_desc: str | None

    @classmethod
    def from_payload(cls, data: dict[str, object]) -> "PaymentVerification":
        result_code = data.get("ResultCode")
        result_desc = data.get("ResultDesc")
        return cls(
            status=data.get("status") is True,
            # Some backends relay the Daraja code as an int
            result_code=str(result_code) if result_code is not None else None,
            result_desc=str(result_desc) if result_desc else None,
        )

    @property
    def is_success(self) -> bool:
        """Success requires both the status flag and result code "0"."""
        return self.status and self.result_code == SUCCESS_RESULT_CODE


@dataclass(frozen=True)
class AccessGrantRequest:
    """Body of POST {access_controller_url}."""

    ip: str
    mac: str
    duration: int  # seconds
    comment: str

    def to_payload(self) -> dict[str, str | int]:
        return {
            "ip": self.ip,
            "mac": self.mac,
            "duration": self.duration,
            "comment": self.comment,
        }
