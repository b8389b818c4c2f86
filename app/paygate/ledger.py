# app/paygate/ledger.py
"""
Exactly-once settlement of verified payments.

The ledger is the serialization point for concurrent requests carrying the
same transaction: insert-or-read-existing happens in a single critical
section, and the challenge is consumed inside that same section, so a record
exists if and only if its challenge was consumed by that transaction.
"""
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.paygate.challenges import ChallengeStore
from app.paygate.errors import TransactionReuse
from app.paygate.models import PaymentChallenge, SettlementRecord, utc_now
from app.paygate.splitter import DEFAULT_PLATFORM_FEE_BPS, split, validate_fee_rate

logger = logging.getLogger(__name__)


class SettlementLedger:
    """
    In-memory settlement ledger keyed by transaction id.

    Records are immutable and never removed. Thread-safe for concurrent access.
    """

    def __init__(
        self,
        challenge_store: ChallengeStore,
        platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.challenge_store = challenge_store
        self.platform_fee_bps = validate_fee_rate(platform_fee_bps)
        self._clock = clock
        self._records: Dict[str, SettlementRecord] = {}
        self._lock = threading.Lock()

    def settle(
        self,
        transaction_id: str,
        challenge: PaymentChallenge,
        amount_atomic: int,
    ) -> SettlementRecord:
        """
        Record that a verified transaction paid a challenge.

        Presenting the same transaction again for the same challenge returns
        the original record unchanged.

        Args:
            transaction_id: Chain transaction hash
            challenge: The challenge the transaction was verified against
            amount_atomic: Verified transfer amount (may exceed the challenge amount)

        Returns:
            The new or existing SettlementRecord

        Raises:
            TransactionReuse: Transaction already settled a different challenge
            ChallengeAlreadyConsumed: Challenge already consumed by another transaction
            ChallengeExpired: Challenge expired before settlement
        """
        key = transaction_id.lower()
        creator_amount, platform_fee = split(amount_atomic, self.platform_fee_bps)

        with self._lock:
            existing = self._records.get(key)
            if existing is not None:
                return self._match_existing(existing, transaction_id, challenge)

            now = self._clock()
            # Raises before anything is recorded if the challenge cannot be consumed
            self.challenge_store.consume(challenge.id, key, now)

            record = SettlementRecord(
                transaction_id=key,
                challenge_id=challenge.id,
                resource_id=challenge.resource_id,
                recipient_address=challenge.recipient_address,
                total_amount=amount_atomic,
                creator_amount=creator_amount,
                platform_fee=platform_fee,
                verified_at=now,
            )
            self._records[key] = record

        logger.info(
            f"Settled {transaction_id} for {challenge.resource_id}: total={amount_atomic} "
            f"creator={creator_amount} platform={platform_fee}"
        )
        return record

    def lookup(self, transaction_id: str, challenge: PaymentChallenge) -> Optional[SettlementRecord]:
        """
        Find the settlement of a transaction for a challenge.

        Returns:
            The existing record for this challenge, or None if the transaction
            has not been settled

        Raises:
            TransactionReuse: Transaction already settled a different challenge
        """
        with self._lock:
            existing = self._records.get(transaction_id.lower())
        if existing is None:
            return None
        return self._match_existing(existing, transaction_id, challenge)

    def _match_existing(
        self,
        existing: SettlementRecord,
        transaction_id: str,
        challenge: PaymentChallenge,
    ) -> SettlementRecord:
        if (existing.challenge_id == challenge.id
                and existing.resource_id == challenge.resource_id):
            logger.info(f"Idempotent replay of settled transaction {transaction_id}")
            return existing
        logger.error(
            f"FRAUD: transaction {transaction_id} already settled challenge "
            f"{existing.challenge_id} ({existing.resource_id}), "
            f"re-presented for {challenge.id} ({challenge.resource_id})"
        )
        raise TransactionReuse(
            f"Transaction {transaction_id} was already used for another purchase",
            details={
                "transaction_id": transaction_id,
                "settled_challenge_id": existing.challenge_id,
                "settled_resource_id": existing.resource_id,
                "challenge_id": challenge.id,
                "resource_id": challenge.resource_id,
            },
        )

    def get(self, transaction_id: str) -> Optional[SettlementRecord]:
        with self._lock:
            return self._records.get(transaction_id.lower())

    def records_for_recipient(self, recipient_address: str) -> List[SettlementRecord]:
        recipient = recipient_address.lower()
        with self._lock:
            return [r for r in self._records.values() if r.recipient_address.lower() == recipient]

    def earnings_summary(self) -> Dict[str, Any]:
        """
        Aggregate settlements per recipient.

        Returns:
            Dict with overall totals and a per-recipient breakdown
        """
        with self._lock:
            records = list(self._records.values())

        by_recipient: Dict[str, Dict[str, int]] = {}
        for record in records:
            entry = by_recipient.setdefault(
                record.recipient_address.lower(),
                {"payments": 0, "total_amount": 0, "creator_amount": 0, "platform_fee": 0},
            )
            entry["payments"] += 1
            entry["total_amount"] += record.total_amount
            entry["creator_amount"] += record.creator_amount
            entry["platform_fee"] += record.platform_fee

        return {
            "total_payments": len(records),
            "total_amount": sum(r.total_amount for r in records),
            "total_platform_fee": sum(r.platform_fee for r in records),
            "by_recipient": by_recipient,
        }

    def clear(self) -> None:
        """Drop all records (useful for testing)."""
        with self._lock:
            self._records.clear()
