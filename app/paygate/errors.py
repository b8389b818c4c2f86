# app/paygate/errors.py
"""
Error taxonomy for the payment gate.

Every failure the gate can report is a PaymentGateError subclass with a
stable wire ``code``. ``retryable`` failures leave challenge state untouched
so the same proof may be presented again; ``fraud`` failures are flagged for
operator review rather than reported as ordinary payment errors.
"""
from typing import Any, Dict, Optional


class PaymentGateError(Exception):
    """Base error for payment gate failures."""

    code = "payment_error"
    retryable = False
    fraud = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


# Caller / configuration errors

class InvalidPrice(PaymentGateError):
    code = "invalid_price"


class InvalidFeeRate(PaymentGateError):
    code = "invalid_fee_rate"


# Terminal verification / settlement failures

class ChallengeNotFound(PaymentGateError):
    code = "challenge_not_found"


class ChallengeExpired(PaymentGateError):
    code = "challenge_expired"


class ChallengeAlreadyConsumed(PaymentGateError):
    code = "challenge_already_consumed"


class WrongRecipient(PaymentGateError):
    code = "wrong_recipient"


class AmountMismatch(PaymentGateError):
    code = "amount_mismatch"


class TransactionReverted(PaymentGateError):
    code = "transaction_reverted"


class NoMatchingTransfer(PaymentGateError):
    code = "no_matching_transfer"


class TransactionReuse(PaymentGateError):
    """Raised when a settled transaction is presented for another challenge."""

    code = "transaction_reuse"
    fraud = True


# Retryable failures

class TransactionNotFound(PaymentGateError):
    code = "transaction_not_found"
    retryable = True


class NotYetConfirmed(PaymentGateError):
    code = "not_yet_confirmed"
    retryable = True


class ChainRPCUnavailable(PaymentGateError):
    code = "chain_rpc_unavailable"
    retryable = True
