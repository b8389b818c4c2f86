# app/paygate/challenges.py
"""
Payment challenge issuance and storage.

A challenge fixes the exact atomic amount, recipient and token for one
resource access at issuance time. The store is the single place challenge
status changes, and every change is a compare-and-set under its lock so a
settlement and an expiry racing on the same challenge resolve to whichever
writer gets there first.
"""
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Callable, Dict, List, Optional, Union

from app.paygate.errors import (
    ChallengeAlreadyConsumed,
    ChallengeExpired,
    ChallengeNotFound,
    InvalidPrice,
)
from app.paygate.models import ChallengeStatus, PaymentChallenge, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300  # 5 minutes

# Decimal digits of 2**256 - 1
MAX_ATOMIC_DIGITS = 78

Price = Union[str, int, float, Decimal]


def to_atomic_units(price: Price, token_decimals: int) -> int:
    """
    Convert a decimal price to the token's atomic units.

    Uses round-half-up to the smallest unit: 0.0000005 with 6 decimals
    becomes 1, 0.00000049 becomes 0. Floats are converted through their
    shortest string form so 0.05 means exactly 0.05.

    Args:
        price: Decimal price (string, int, float or Decimal)
        token_decimals: Number of decimals the token uses

    Returns:
        Amount in atomic units

    Raises:
        InvalidPrice: If the price is not a positive finite number, rounds to
            zero, or does not fit a uint256 amount
    """
    if isinstance(price, bool):
        raise InvalidPrice(f"Invalid price: {price!r}")
    try:
        value = Decimal(str(price).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidPrice(f"Invalid price: {price!r}") from e

    if not value.is_finite() or value <= 0:
        raise InvalidPrice(f"Price must be a positive number, got {price!r}")

    integer_digits = max(value.adjusted() + 1 + token_decimals, 1)
    if integer_digits > MAX_ATOMIC_DIGITS:
        raise InvalidPrice(f"Price {price!r} is out of range")

    # Exact scaling, so the only rounding is the half-up quantize
    with localcontext() as ctx:
        ctx.prec = max(len(value.as_tuple().digits), integer_digits) + token_decimals + 1
        atomic = value.scaleb(token_decimals).quantize(Decimal(1), rounding=ROUND_HALF_UP)

    if atomic >= 2 ** 256:
        raise InvalidPrice(f"Price {price!r} is out of range")

    if atomic <= 0:
        raise InvalidPrice(
            f"Price {price!r} is below the smallest unit of a {token_decimals}-decimal token"
        )
    return int(atomic)


class ChallengeStore:
    """
    In-memory challenge store keyed by challenge id.

    Challenges are never deleted; expired and consumed ones stay for audit.
    Readers get snapshots, so status can only change through the
    compare-and-set methods below. Thread-safe for concurrent access.
    """

    def __init__(self):
        self._challenges: Dict[str, PaymentChallenge] = {}
        self._lock = threading.Lock()

    def add(self, challenge: PaymentChallenge) -> None:
        with self._lock:
            if challenge.id in self._challenges:
                raise ValueError(f"Duplicate challenge id: {challenge.id}")
            self._challenges[challenge.id] = replace(challenge)

    def get(self, challenge_id: str) -> Optional[PaymentChallenge]:
        """Return a snapshot of the challenge, or None if unknown."""
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            return replace(challenge) if challenge is not None else None

    def consume(self, challenge_id: str, transaction_id: str, now: datetime) -> PaymentChallenge:
        """
        Transition a challenge OPEN -> CONSUMED for the given transaction.

        Consuming again with the same transaction is a no-op that returns the
        challenge. An OPEN challenge found past its expiry is expired instead.

        Raises:
            ChallengeNotFound: Unknown challenge id
            ChallengeExpired: Challenge expired, now or earlier
            ChallengeAlreadyConsumed: Consumed by a different transaction
        """
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                raise ChallengeNotFound(f"Unknown challenge: {challenge_id}")

            if challenge.status == ChallengeStatus.OPEN and challenge.is_past_expiry(now):
                challenge.status = ChallengeStatus.EXPIRED
                logger.info(f"Challenge {challenge_id} expired at settlement time")

            if challenge.status == ChallengeStatus.EXPIRED:
                raise ChallengeExpired(
                    f"Challenge {challenge_id} expired at {challenge.expires_at.isoformat()}",
                    details={"challenge_id": challenge_id},
                )

            if challenge.status == ChallengeStatus.CONSUMED:
                if challenge.consumed_by == transaction_id:
                    return replace(challenge)
                raise ChallengeAlreadyConsumed(
                    f"Challenge {challenge_id} was already used by another transaction",
                    details={"challenge_id": challenge_id},
                )

            challenge.status = ChallengeStatus.CONSUMED
            challenge.consumed_by = transaction_id
            return replace(challenge)

    def expire(self, challenge_id: str, now: datetime) -> bool:
        """
        Transition a challenge OPEN -> EXPIRED if it is past its expiry.

        Returns:
            True if the challenge is EXPIRED after the call
        """
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None:
                return False
            if challenge.status == ChallengeStatus.OPEN and challenge.is_past_expiry(now):
                challenge.status = ChallengeStatus.EXPIRED
            return challenge.status == ChallengeStatus.EXPIRED

    def sweep_expired(self, now: datetime) -> List[str]:
        """Expire every OPEN challenge past its expiry. Returns the expired ids."""
        expired = []
        with self._lock:
            for challenge in self._challenges.values():
                if challenge.status == ChallengeStatus.OPEN and challenge.is_past_expiry(now):
                    challenge.status = ChallengeStatus.EXPIRED
                    expired.append(challenge.id)
        if expired:
            logger.info(f"Expired {len(expired)} overdue challenge(s)")
        return expired

    def count_by_status(self) -> Dict[str, int]:
        with self._lock:
            counts = {status.value: 0 for status in ChallengeStatus}
            for challenge in self._challenges.values():
                counts[challenge.status.value] += 1
            return counts

    def clear(self) -> None:
        """Drop all challenges (useful for testing)."""
        with self._lock:
            self._challenges.clear()


class ChallengeIssuer:
    """Creates challenges for one configured chain and token."""

    def __init__(
        self,
        store: ChallengeStore,
        token_contract: str,
        chain_id: int,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.token_contract = token_contract
        self.chain_id = chain_id
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    def issue(
        self,
        resource_id: str,
        recipient_address: str,
        price: Price,
        token_decimals: int,
        ttl_seconds: Optional[int] = None,
    ) -> PaymentChallenge:
        """
        Issue and store a new OPEN challenge.

        Args:
            resource_id: Resource the payment unlocks
            recipient_address: Address the transfer must pay
            price: Decimal price in token units (e.g. "0.05")
            token_decimals: Decimals of the configured token
            ttl_seconds: Challenge lifetime, defaults to the issuer's TTL

        Returns:
            The stored PaymentChallenge

        Raises:
            InvalidPrice: If the price is not positive
        """
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError(f"Challenge TTL must be positive, got {ttl}")

        amount_atomic = to_atomic_units(price, token_decimals)
        now = self._clock()

        challenge = PaymentChallenge(
            id=str(uuid.uuid4()),
            resource_id=resource_id,
            recipient_address=recipient_address,
            token_contract=self.token_contract,
            chain_id=self.chain_id,
            amount_atomic=amount_atomic,
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        self.store.add(challenge)

        logger.info(
            f"Issued challenge {challenge.id} for {resource_id}: "
            f"{amount_atomic} units to {recipient_address} (ttl={ttl}s)"
        )
        return challenge
