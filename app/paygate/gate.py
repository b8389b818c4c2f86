# app/paygate/gate.py
"""
Request/response orchestration of the payment gate.

Per request:
1. No proof: issue a challenge and answer "payment required"
2. Proof for an unknown challenge (or one issued for another resource): ChallengeNotFound
3. Proof for an expired challenge: ChallengeExpired, without touching the chain
4. Proof for a consumed challenge: idempotent replay if it is the same
   transaction, otherwise ChallengeAlreadyConsumed / TransactionReuse
5. Proof for an open challenge: verify on-chain, settle, serve the resource

Retryable failures leave the challenge OPEN so the same proof can be sent
again. Terminal failures are reported and never retried here; the caller
decides whether to ask for a new challenge.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from app.paygate import audit
from app.paygate.challenges import DEFAULT_TTL_SECONDS, ChallengeIssuer
from app.paygate.errors import (
    ChallengeAlreadyConsumed,
    ChallengeExpired,
    ChallengeNotFound,
    PaymentGateError,
)
from app.paygate.ledger import SettlementLedger
from app.paygate.models import (
    ChallengeStatus,
    GatedResource,
    PaymentChallenge,
    SettlementRecord,
    utc_now,
)
from app.paygate.verifier import TransactionVerifier, is_transaction_hash

logger = logging.getLogger(__name__)

PAYMENT_PROOF_HEADER = "X-Payment-Proof"
PAYMENT_CHALLENGE_HEADER = "X-Payment-Challenge"

INVALID_PROOF_CODE = "invalid_proof"


class AccessOutcome(Enum):
    GRANTED = "granted"
    PAYMENT_REQUIRED = "payment_required"
    FORBIDDEN = "forbidden"


_STATUS_CODES = {
    AccessOutcome.GRANTED: 200,
    AccessOutcome.PAYMENT_REQUIRED: 402,
    AccessOutcome.FORBIDDEN: 403,
}


@dataclass
class AccessResponse:
    """Protocol-level answer to an access request."""
    outcome: AccessOutcome
    body: Dict[str, Any]
    challenge: Optional[PaymentChallenge] = None
    settlement: Optional[SettlementRecord] = None
    error: Optional[PaymentGateError] = None
    replayed: bool = False

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self.outcome]

    @property
    def error_code(self) -> Optional[str]:
        return self.body.get("error") if self.outcome != AccessOutcome.GRANTED else None


def payment_instructions(challenge: PaymentChallenge) -> Dict[str, Any]:
    """Human-readable instructions for paying a challenge."""
    return {
        "method": f"ERC-20 transfer on chain {challenge.chain_id}",
        "amount": f"{challenge.amount_atomic} atomic units of {challenge.token_contract}",
        "recipient": challenge.recipient_address,
        "expires": challenge.expires_at.isoformat(),
        "proof": (
            f"Retry the request with headers {PAYMENT_PROOF_HEADER}: <transaction hash> "
            f"and {PAYMENT_CHALLENGE_HEADER}: {challenge.id}"
        ),
    }


class GateController:
    """Orchestrates challenge issuance, verification and settlement."""

    def __init__(
        self,
        issuer: ChallengeIssuer,
        verifier: TransactionVerifier,
        ledger: SettlementLedger,
        token_decimals: int,
        challenge_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.issuer = issuer
        self.verifier = verifier
        self.ledger = ledger
        self.token_decimals = token_decimals
        self.challenge_ttl_seconds = challenge_ttl_seconds
        self._clock = clock

    @property
    def challenges(self):
        return self.issuer.store

    def request_access(
        self,
        resource: GatedResource,
        transaction_id: Optional[str] = None,
        challenge_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> AccessResponse:
        """
        Handle one access request for a gated resource.

        Args:
            resource: The resource being requested
            transaction_id: Payment proof (transaction hash), if any
            challenge_id: Challenge the proof answers, if any
            request_id: Correlation id for audit events

        Returns:
            AccessResponse (GRANTED, PAYMENT_REQUIRED or FORBIDDEN)

        Raises:
            InvalidPrice: If the resource price cannot be charged
        """
        transaction_id = transaction_id.strip() if transaction_id else None
        if not transaction_id:
            return self._issue_challenge(resource, request_id)

        challenge = self.challenges.get(challenge_id) if challenge_id else None
        try:
            if challenge is None or challenge.resource_id != resource.resource_id:
                raise ChallengeNotFound(
                    f"Unknown challenge for {resource.resource_id}: {challenge_id}",
                    details={"challenge_id": challenge_id},
                )
            return self._handle_proof(resource, challenge, transaction_id, request_id)
        except PaymentGateError as e:
            return self._failure(resource, challenge, transaction_id, e, request_id)

    def now(self) -> datetime:
        """Current time on the gate's clock."""
        return self._clock()

    def sweep_expired(self) -> List[str]:
        """Expire every open challenge past its expiry."""
        return self.challenges.sweep_expired(self.now())

    def _issue_challenge(self, resource: GatedResource, request_id: Optional[str]) -> AccessResponse:
        challenge = self.issuer.issue(
            resource_id=resource.resource_id,
            recipient_address=resource.recipient_address,
            price=resource.price,
            token_decimals=self.token_decimals,
            ttl_seconds=self.challenge_ttl_seconds,
        )
        audit.log_challenge_issued(
            resource_id=resource.resource_id,
            challenge_id=challenge.id,
            amount_atomic=challenge.amount_atomic,
            recipient_address=challenge.recipient_address,
            expires_at=challenge.expires_at.isoformat(),
            request_id=request_id,
        )
        return AccessResponse(
            outcome=AccessOutcome.PAYMENT_REQUIRED,
            body={
                "error": "payment_required",
                "message": "Payment required to access this resource",
                "payment": challenge.to_dict(),
                "instructions": payment_instructions(challenge),
            },
            challenge=challenge,
        )

    def _handle_proof(
        self,
        resource: GatedResource,
        challenge: PaymentChallenge,
        transaction_id: str,
        request_id: Optional[str],
    ) -> AccessResponse:
        now = self._clock()

        if challenge.status == ChallengeStatus.EXPIRED or (
            challenge.status == ChallengeStatus.OPEN and challenge.is_past_expiry(now)
        ):
            self.challenges.expire(challenge.id, now)
            raise ChallengeExpired(
                f"Challenge {challenge.id} expired at {challenge.expires_at.isoformat()}",
                details={"challenge_id": challenge.id},
            )

        if not is_transaction_hash(transaction_id):
            if challenge.status == ChallengeStatus.OPEN:
                logger.warning(f"Malformed payment proof for {resource.resource_id}: {transaction_id!r}")
                return AccessResponse(
                    outcome=AccessOutcome.PAYMENT_REQUIRED,
                    body={
                        "error": INVALID_PROOF_CODE,
                        "message": "Payment proof must be a 0x-prefixed 32-byte transaction hash",
                        "retryable": True,
                        "payment": challenge.to_dict(),
                        "instructions": payment_instructions(challenge),
                    },
                    challenge=challenge,
                )
            raise ChallengeAlreadyConsumed(
                f"Challenge {challenge.id} was already used",
                details={"challenge_id": challenge.id},
            )

        transaction_id = transaction_id.lower()

        # Settled before: replay for the same challenge, fraud for another
        existing = self.ledger.lookup(transaction_id, challenge)
        if existing is not None:
            return self._granted(resource, existing, replayed=True, request_id=request_id)

        if challenge.status == ChallengeStatus.CONSUMED:
            raise ChallengeAlreadyConsumed(
                f"Challenge {challenge.id} was already used by another transaction",
                details={"challenge_id": challenge.id, "transaction_id": transaction_id},
            )

        result = self.verifier.verify(transaction_id, challenge)
        audit.log_payment_verified(
            resource_id=resource.resource_id,
            transaction_id=transaction_id,
            amount_atomic=result.amount_atomic,
            sender=result.sender,
            confirmations=result.confirmations,
            request_id=request_id,
        )

        record = self.ledger.settle(transaction_id, challenge, result.amount_atomic)
        return self._granted(resource, record, replayed=False, request_id=request_id)

    def _granted(
        self,
        resource: GatedResource,
        record: SettlementRecord,
        replayed: bool,
        request_id: Optional[str],
    ) -> AccessResponse:
        audit.log_payment_settled(
            resource_id=resource.resource_id,
            transaction_id=record.transaction_id,
            challenge_id=record.challenge_id,
            total_amount=record.total_amount,
            creator_amount=record.creator_amount,
            platform_fee=record.platform_fee,
            replayed=replayed,
            request_id=request_id,
        )
        payment = record.to_dict()
        payment["replayed"] = replayed
        return AccessResponse(
            outcome=AccessOutcome.GRANTED,
            body={"resource": resource.payload, "payment": payment},
            settlement=record,
            replayed=replayed,
        )

    def _failure(
        self,
        resource: GatedResource,
        challenge: Optional[PaymentChallenge],
        transaction_id: Optional[str],
        error: PaymentGateError,
        request_id: Optional[str],
    ) -> AccessResponse:
        body = error.to_dict()
        challenge_id = challenge.id if challenge is not None else None

        if error.fraud:
            logger.error(
                f"Transaction reuse flagged for review: {transaction_id} on {resource.resource_id}: {error.message}"
            )
            audit.log_fraud_flagged(
                resource_id=resource.resource_id,
                transaction_id=transaction_id,
                details={"error_code": error.code, **error.details},
                request_id=request_id,
            )
            return AccessResponse(outcome=AccessOutcome.FORBIDDEN, body=body, challenge=challenge, error=error)

        if isinstance(error, ChallengeExpired) and challenge is not None:
            audit.log_challenge_expired(
                resource_id=resource.resource_id,
                challenge_id=challenge.id,
                transaction_id=transaction_id,
                request_id=request_id,
            )
        else:
            audit.log_payment_failed(
                resource_id=resource.resource_id,
                error_code=error.code,
                reason=error.message,
                retryable=error.retryable,
                transaction_id=transaction_id,
                challenge_id=challenge_id,
                request_id=request_id,
            )

        if error.retryable and challenge is not None:
            logger.info(f"Retryable payment failure for {resource.resource_id}: {error.message}")
            current = self.challenges.get(challenge.id) or challenge
            body["payment"] = current.to_dict()
            body["instructions"] = payment_instructions(current)
        else:
            logger.warning(f"Payment rejected for {resource.resource_id}: [{error.code}] {error.message}")

        return AccessResponse(
            outcome=AccessOutcome.PAYMENT_REQUIRED,
            body=body,
            challenge=challenge,
            error=error,
        )
