# app/core/errors.py
"""
Typed failures for the payment, agent wallet and reputation flows.

Services raise these; routers turn them into `{"error": code, ...context}`
JSON bodies with the matching HTTP status. Context values must never carry
key material, passwords or raw decryption errors.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for every typed failure surfaced to API callers."""

    code = "server_error"
    status_code = 500

    def __init__(self, message: Optional[str] = None, **context: Any):
        super().__init__(message or self.code)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        """Render the error as a response body."""
        body: Dict[str, Any] = {"error": self.code}
        if self.message:
            body["message"] = self.message
        body.update(self.context)
        return body


class BadRequestError(PaymentError):
    code = "bad_request"
    status_code = 400


class AssetNotFoundError(PaymentError):
    code = "asset_not_found"
    status_code = 404


class AgentNotFoundError(PaymentError):
    code = "agent_not_found"
    status_code = 404


class ChallengeExpiredError(PaymentError):
    code = "challenge_expired"
    status_code = 400


class InvalidTransactionError(PaymentError):
    code = "invalid_tx"
    status_code = 400


class NoTransferFoundError(PaymentError):
    code = "no_transfer_found"
    status_code = 400


class BadAmountError(PaymentError):
    code = "bad_amount"
    status_code = 400


class SelfPaymentError(PaymentError):
    code = "self_payment"
    status_code = 400


class UnauthorizedError(PaymentError):
    code = "unauthorized"
    status_code = 401


class InsufficientBalanceError(PaymentError):
    code = "insufficient_balance"
    status_code = 400


class VerificationFailedError(PaymentError):
    """Raised when an agent transfer was submitted but the receipt did not verify."""
    code = "verification_failed"
    status_code = 400


class ServerError(PaymentError):
    code = "server_error"
    status_code = 500
