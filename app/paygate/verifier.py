# app/paygate/verifier.py
"""
On-chain verification of a payment against a challenge.

The verifier fetches the transaction and its receipt through an injected
ChainClient, waits (bounded) for the required confirmations, and decodes the
ERC-20 Transfer event emitted by the configured token contract:

    Transfer(address indexed from, address indexed to, uint256 value)

    topics[0]  keccak256("Transfer(address,address,uint256)")
    topics[1]  sender, left-padded to 32 bytes
    topics[2]  recipient, left-padded to 32 bytes
    data       value as one 32-byte big-endian word

Each failure maps to its own PaymentGateError subclass.
"""
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.paygate.challenges import ChallengeStore
from app.paygate.chain import ChainClient
from app.paygate.errors import (
    AmountMismatch,
    ChainRPCUnavailable,
    ChallengeExpired,
    NoMatchingTransfer,
    NotYetConfirmed,
    TransactionNotFound,
    TransactionReverted,
    WrongRecipient,
)
from app.paygate.models import PaymentChallenge, VerificationResult, utc_now

logger = logging.getLogger(__name__)

TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

_WORD_RE = re.compile(r"0x[0-9a-fA-F]{64}")
_TX_HASH_RE = _WORD_RE


def is_transaction_hash(value: Optional[str]) -> bool:
    """Check that a value looks like a 32-byte hex transaction hash."""
    return bool(value) and bool(_TX_HASH_RE.fullmatch(value))


def _parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string) or plain int."""
    if isinstance(value, int):
        return value
    return int(value, 16)


def _receipt_quantity(receipt: Any, field: str, transaction_id: str) -> int:
    """
    Read a quantity field from a receipt.

    Raises:
        ChainRPCUnavailable: If the node returned the field missing or malformed
    """
    try:
        return _parse_quantity(receipt[field])
    except (KeyError, TypeError, ValueError) as e:
        raise ChainRPCUnavailable(
            f"Malformed receipt for {transaction_id}: invalid {field}",
            details={"transaction_id": transaction_id, "field": field},
        ) from e


def topic_to_address(topic: str) -> str:
    """
    Decode an indexed address topic into a lowercase 0x address.

    Raises:
        ValueError: If the topic is not a 32-byte word or has non-zero padding
    """
    if not isinstance(topic, str) or not _WORD_RE.fullmatch(topic):
        raise ValueError(f"Not a 32-byte topic: {topic!r}")
    padding, address = topic[2:26], topic[26:]
    if int(padding, 16) != 0:
        raise ValueError(f"Address topic has non-zero padding: {topic}")
    return "0x" + address.lower()


def data_to_uint256(data: str) -> int:
    """
    Decode a single ABI-encoded uint256 word.

    Raises:
        ValueError: If the data is not exactly one 32-byte word
    """
    if not isinstance(data, str) or not _WORD_RE.fullmatch(data):
        raise ValueError(f"Transfer data is not one 32-byte word: {data!r}")
    return int(data, 16)


@dataclass(frozen=True)
class TransferEvent:
    """A decoded ERC-20 Transfer log."""
    token: str
    sender: str
    recipient: str
    amount: int
    log_index: Optional[int] = None


def decode_transfer_log(log: Dict[str, Any]) -> Optional[TransferEvent]:
    """
    Decode a receipt log as an ERC-20 Transfer event.

    Returns:
        TransferEvent, or None if the log is not a well-formed Transfer
    """
    topics = log.get("topics") or []
    if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_EVENT_TOPIC:
        return None

    try:
        sender = topic_to_address(topics[1])
        recipient = topic_to_address(topics[2])
        amount = data_to_uint256(log.get("data", ""))
        log_index = log.get("logIndex")
        if log_index is not None:
            log_index = _parse_quantity(log_index)
    except (TypeError, ValueError) as e:
        logger.debug(f"Skipping malformed Transfer log: {e}")
        return None

    return TransferEvent(
        token=str(log.get("address", "")).lower(),
        sender=sender,
        recipient=recipient,
        amount=amount,
        log_index=log_index,
    )


class TransactionVerifier:
    """Validates a transaction hash against a payment challenge."""

    def __init__(
        self,
        chain_client: ChainClient,
        token_contract: str,
        required_confirmations: int = 1,
        confirmation_polls: int = 3,
        backoff_seconds: float = 0.5,
        challenge_store: Optional[ChallengeStore] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.chain_client = chain_client
        self.token_contract = token_contract.lower()
        self.required_confirmations = required_confirmations
        self.confirmation_polls = confirmation_polls
        self.backoff_seconds = backoff_seconds
        self.challenge_store = challenge_store
        self._clock = clock
        self._sleep = sleep

    def verify(self, transaction_id: str, challenge: PaymentChallenge) -> VerificationResult:
        """
        Verify that a transaction pays the given challenge.

        Flow:
        1. Transaction must exist
        2. Receipt must show successful execution
        3. Receipt must have the required confirmations (re-polled with backoff)
        4. Receipt must hold a Transfer log from the configured token
        5. Decode recipient and amount from that log
        6. Recipient must equal the challenge recipient (case-insensitive)
        7. Amount must be at least the challenge amount
        8. Challenge must not be past its expiry

        Raises:
            TransactionNotFound, NotYetConfirmed, ChainRPCUnavailable: retryable
            TransactionReverted, NoMatchingTransfer, WrongRecipient,
            AmountMismatch, ChallengeExpired: terminal
        """
        transaction = self.chain_client.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(
                f"Transaction {transaction_id} not found",
                details={"transaction_id": transaction_id},
            )

        receipt, block_number, confirmations = self._wait_for_confirmations(transaction_id)

        transfers = self._token_transfers(receipt)
        if not transfers:
            raise NoMatchingTransfer(
                f"No {self.token_contract} Transfer event in {transaction_id}",
                details={"transaction_id": transaction_id, "token_contract": self.token_contract},
            )

        expected_recipient = challenge.recipient_address.lower()
        paying = [t for t in transfers if t.recipient == expected_recipient]
        if not paying:
            raise WrongRecipient(
                f"Transfer pays {transfers[0].recipient}, expected {challenge.recipient_address}",
                details={
                    "transaction_id": transaction_id,
                    "expected": expected_recipient,
                    "actual": transfers[0].recipient,
                },
            )

        transfer = max(paying, key=lambda t: t.amount)
        if transfer.amount < challenge.amount_atomic:
            raise AmountMismatch(
                f"Transfer of {transfer.amount} is below required {challenge.amount_atomic}",
                details={
                    "transaction_id": transaction_id,
                    "expected": str(challenge.amount_atomic),
                    "actual": str(transfer.amount),
                },
            )

        now = self._clock()
        if challenge.is_past_expiry(now):
            if self.challenge_store is not None:
                self.challenge_store.expire(challenge.id, now)
            raise ChallengeExpired(
                f"Challenge {challenge.id} expired at {challenge.expires_at.isoformat()}",
                details={"challenge_id": challenge.id, "transaction_id": transaction_id},
            )

        logger.info(
            f"Verified {transaction_id}: {transfer.amount} units to {transfer.recipient} "
            f"({confirmations} confirmations)"
        )
        return VerificationResult(
            valid=True,
            amount_atomic=transfer.amount,
            sender=transfer.sender,
            block_number=block_number,
            confirmations=confirmations,
        )

    def _wait_for_confirmations(self, transaction_id: str):
        """
        Fetch the receipt and poll until it has enough confirmations.

        Returns:
            Tuple of (receipt, block_number, confirmations)
        """
        for attempt in range(self.confirmation_polls + 1):
            if attempt > 0:
                self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))

            receipt = self.chain_client.get_transaction_receipt(transaction_id)
            if receipt is None:
                # Known to the node but not yet mined
                confirmations = 0
                block_number = None
            else:
                if _receipt_quantity(receipt, "status", transaction_id) != 1:
                    raise TransactionReverted(
                        f"Transaction {transaction_id} reverted",
                        details={"transaction_id": transaction_id},
                    )
                block_number = _receipt_quantity(receipt, "blockNumber", transaction_id)
                latest = self.chain_client.get_block_number()
                # Blocks mined after the inclusion block
                confirmations = max(0, latest - block_number)
                if confirmations >= self.required_confirmations:
                    return receipt, block_number, confirmations

            logger.debug(
                f"{transaction_id}: {confirmations}/{self.required_confirmations} confirmations "
                f"(poll {attempt + 1}/{self.confirmation_polls + 1})"
            )

        raise NotYetConfirmed(
            f"Transaction {transaction_id} has {confirmations} of "
            f"{self.required_confirmations} required confirmations",
            details={
                "transaction_id": transaction_id,
                "confirmations": confirmations,
                "required": self.required_confirmations,
            },
        )

    def _token_transfers(self, receipt: Dict[str, Any]) -> List[TransferEvent]:
        transfers = []
        for log in receipt.get("logs") or []:
            if not isinstance(log, dict) or log.get("removed"):
                continue
            if str(log.get("address", "")).lower() != self.token_contract:
                continue
            event = decode_transfer_log(log)
            if event is not None:
                transfers.append(event)
        return transfers
