# app/paygate/models.py
"""
Data model for the payment gate.

Amounts are always integers in the token's atomic units. Timestamps are
timezone-aware UTC datetimes.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class ChallengeStatus(Enum):
    """Lifecycle of a payment challenge. CONSUMED and EXPIRED are terminal."""
    OPEN = "open"
    CONSUMED = "consumed"
    EXPIRED = "expired"


@dataclass
class PaymentChallenge:
    """A time-bounded, single-use statement of what payment unlocks a resource."""
    id: str
    resource_id: str
    recipient_address: str
    token_contract: str
    chain_id: int
    amount_atomic: int
    issued_at: datetime
    expires_at: datetime
    status: ChallengeStatus = ChallengeStatus.OPEN
    consumed_by: Optional[str] = None

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "challengeId": self.id,
            "resourceId": self.resource_id,
            "recipientAddress": self.recipient_address,
            "tokenContract": self.token_contract,
            "chainId": self.chain_id,
            # String so clients in any language keep full precision
            "amountAtomic": str(self.amount_atomic),
            "issuedAt": self.issued_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class SettlementRecord:
    """The exactly-once record that a transaction satisfied a challenge."""
    transaction_id: str
    challenge_id: str
    resource_id: str
    recipient_address: str
    total_amount: int
    creator_amount: int
    platform_fee: int
    verified_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transactionId": self.transaction_id,
            "challengeId": self.challenge_id,
            "resourceId": self.resource_id,
            "recipientAddress": self.recipient_address,
            "totalAmount": str(self.total_amount),
            "creatorAmount": str(self.creator_amount),
            "platformFee": str(self.platform_fee),
            "settledAt": self.verified_at.isoformat(),
        }


@dataclass(frozen=True)
class VerificationResult:
    """Result of verifying a transaction against a challenge."""
    valid: bool
    amount_atomic: int
    sender: Optional[str] = None
    block_number: Optional[int] = None
    confirmations: Optional[int] = None


@dataclass(frozen=True)
class GatedResource:
    """What the gate needs to know about a resource to charge for it."""
    resource_id: str
    recipient_address: str
    price: str
    payload: Dict[str, Any] = field(default_factory=dict)
