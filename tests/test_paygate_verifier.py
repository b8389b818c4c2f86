# tests/test_paygate_verifier.py
"""
Unit tests for on-chain transaction verification.
"""
import pytest

from app.paygate.challenges import ChallengeIssuer, ChallengeStore
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
from app.paygate.models import ChallengeStatus
from app.paygate.verifier import (
    TRANSFER_EVENT_TOPIC,
    TransactionVerifier,
    data_to_uint256,
    decode_transfer_log,
    is_transaction_hash,
    topic_to_address,
)
from tests.paygate_fakes import (
    CHAIN_ID,
    CREATOR,
    OTHER_WALLET,
    PAYER,
    TOKEN,
    TX_HASH,
    FakeChainClient,
    FakeClock,
    address_topic,
    transfer_log,
    uint256_data,
)


class TestTransferDecoding:
    """Test canonical ERC-20 Transfer log decoding."""

    def test_transfer_topic_constant(self):
        """topic0 is keccak256('Transfer(address,address,uint256)')."""
        assert TRANSFER_EVENT_TOPIC == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

    def test_decode_transfer(self):
        """Recipient from topic 2, amount from data."""
        event = decode_transfer_log(transfer_log(CREATOR, 50000, log_index=3))

        assert event.sender == PAYER
        assert event.recipient == CREATOR
        assert event.amount == 50000
        assert event.token == TOKEN.lower()
        assert event.log_index == 3

    def test_topic_to_address_lowercases(self):
        topic = "0x" + "0" * 24 + "AbCdEf" * 6 + "AbCd"
        assert topic_to_address(topic) == "0x" + ("abcdef" * 6 + "abcd")

    def test_topic_with_dirty_padding_rejected(self):
        topic = "0x" + "0" * 23 + "1" + "ab" * 20
        with pytest.raises(ValueError):
            topic_to_address(topic)

    def test_data_decodes_full_uint256(self):
        max_uint = 2 ** 256 - 1
        assert data_to_uint256(uint256_data(max_uint)) == max_uint

    @pytest.mark.parametrize("data", ["0x", "0x1234", "0x" + "00" * 64, "", None])
    def test_data_must_be_one_word(self, data):
        with pytest.raises(ValueError):
            data_to_uint256(data)

    def test_non_transfer_event_ignored(self):
        """Approval and other events are not transfers."""
        log = transfer_log(CREATOR, 50000)
        log["topics"][0] = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"
        assert decode_transfer_log(log) is None

    def test_wrong_topic_count_ignored(self):
        """ERC-721 style Transfer (4 topics) is not an ERC-20 transfer."""
        log = transfer_log(CREATOR, 50000)
        log["topics"].append(uint256_data(1))
        assert decode_transfer_log(log) is None

    def test_malformed_data_ignored(self):
        log = transfer_log(CREATOR, 50000)
        log["data"] = "0x"
        assert decode_transfer_log(log) is None


class TestIsTransactionHash:

    def test_valid_hash(self):
        assert is_transaction_hash(TX_HASH) is True
        assert is_transaction_hash(TX_HASH.upper().replace("0X", "0x")) is True

    @pytest.mark.parametrize("value", [None, "", "0x1234", "11" * 32, TX_HASH + "00", TX_HASH + "\n", "0x" + "zz" * 32])
    def test_invalid_hash(self, value):
        assert is_transaction_hash(value) is False


class TestTransactionVerifier:
    """Test verification steps and their failure kinds."""

    def setup_method(self):
        self.clock = FakeClock()
        self.chain = FakeChainClient(block_number=100)
        self.store = ChallengeStore()
        self.issuer = ChallengeIssuer(self.store, token_contract=TOKEN, chain_id=CHAIN_ID, clock=self.clock)
        self.challenge = self.issuer.issue("article-1", CREATOR, "0.05", token_decimals=6)
        self.sleeps = []
        self.verifier = self._verifier()

    def _verifier(self, required_confirmations=1, confirmation_polls=2, chain=None):
        return TransactionVerifier(
            chain_client=chain or self.chain,
            token_contract=TOKEN,
            required_confirmations=required_confirmations,
            confirmation_polls=confirmation_polls,
            backoff_seconds=1.0,
            challenge_store=self.store,
            clock=self.clock,
            sleep=self.sleeps.append,
        )

    def test_valid_payment(self):
        """A confirmed, matching transfer verifies."""
        self.chain.add_payment(TX_HASH, to=CREATOR, amount=50000)

        result = self.verifier.verify(TX_HASH, self.challenge)

        assert result.valid is True
        assert result.amount_atomic == 50000
        assert result.sender == PAYER
        assert result.block_number == 99
        assert result.confirmations == 1

    def test_recipient_compare_is_case_insensitive(self):
        """Checksummed challenge recipients match lowercase log topics."""
        checksummed = "0x" + "AB" * 20
        challenge = self.issuer.issue("article-2", checksummed, "0.05", token_decimals=6)
        self.chain.add_payment(TX_HASH, to=CREATOR, amount=50000)
        assert self.verifier.verify(TX_HASH, challenge).valid is True

    def test_token_address_compare_is_case_insensitive(self):
        log = transfer_log(CREATOR, 50000, token=TOKEN.lower())
        self.chain.add_payment(TX_HASH, logs=[log])
        assert self.verifier.verify(TX_HASH, self.challenge).valid is True

    def test_transaction_not_found(self):
        """Unknown transactions are retryable."""
        with pytest.raises(TransactionNotFound) as exc_info:
            self.verifier.verify(TX_HASH, self.challenge)
        assert exc_info.value.retryable is True

    def test_reverted_transaction(self):
        """Failed execution is terminal."""
        self.chain.add_payment(TX_HASH, status="0x0")
        with pytest.raises(TransactionReverted) as exc_info:
            self.verifier.verify(TX_HASH, self.challenge)
        assert exc_info.value.retryable is False

    def test_not_yet_confirmed_polls_with_backoff(self):
        """Too few confirmations re-polls, then surfaces NotYetConfirmed."""
        self.chain.add_payment(TX_HASH, block=100)
        verifier = self._verifier(required_confirmations=5, confirmation_polls=2)

        with pytest.raises(NotYetConfirmed) as exc_info:
            verifier.verify(TX_HASH, self.challenge)

        assert exc_info.value.retryable is True
        assert exc_info.value.details["confirmations"] == 0
        assert exc_info.value.details["required"] == 5
        assert self.sleeps == [1.0, 2.0]
        assert self.chain.calls.count("get_transaction_receipt") == 3

    def test_confirmations_arrive_while_polling(self):
        """A block mined between polls lets verification finish."""
        self.chain.add_payment(TX_HASH, block=100)
        verifier = self._verifier(required_confirmations=2, confirmation_polls=2)

        original = self.chain.get_block_number

        def advancing_block_number():
            number = original()
            self.chain.block_number += 1
            return number

        self.chain.get_block_number = advancing_block_number

        result = verifier.verify(TX_HASH, self.challenge)
        assert result.confirmations == 2
        assert self.sleeps == [1.0, 2.0]

    def test_pending_transaction_not_confirmed(self):
        """Known but unmined transactions are NotYetConfirmed."""
        self.chain.add_payment(TX_HASH, mined=False)
        with pytest.raises(NotYetConfirmed):
            self.verifier.verify(TX_HASH, self.challenge)

    def test_inclusion_block_is_not_a_confirmation(self):
        """A transaction in the newest block has zero confirmations."""
        self.chain.add_payment(TX_HASH, block=100)

        with pytest.raises(NotYetConfirmed) as exc_info:
            self.verifier.verify(TX_HASH, self.challenge)

        assert exc_info.value.details["confirmations"] == 0
        assert exc_info.value.details["required"] == 1

    def test_one_block_after_inclusion_confirms(self):
        self.chain.add_payment(TX_HASH, block=100)
        self.chain.block_number = 101

        result = self.verifier.verify(TX_HASH, self.challenge)

        assert result.confirmations == 1
        assert self.sleeps == []

    @pytest.mark.parametrize("field,value", [("status", None), ("status", "0xzz"), ("blockNumber", None)])
    def test_malformed_receipt_is_retryable(self, field, value):
        """A receipt the node returns in a broken shape is a retryable RPC failure."""
        self.chain.add_payment(TX_HASH, amount=50000)
        self.chain.receipts[TX_HASH][field] = value

        with pytest.raises(ChainRPCUnavailable) as exc_info:
            self.verifier.verify(TX_HASH, self.challenge)

        assert exc_info.value.retryable is True
        assert exc_info.value.details["field"] == field

    def test_receipt_missing_block_number(self):
        self.chain.add_payment(TX_HASH, amount=50000)
        del self.chain.receipts[TX_HASH]["blockNumber"]

        with pytest.raises(ChainRPCUnavailable):
            self.verifier.verify(TX_HASH, self.challenge)

    def test_malformed_log_index_skips_log(self):
        log = transfer_log(CREATOR, 50000)
        log["logIndex"] = None
        bad = transfer_log(CREATOR, 50000, log_index=1)
        bad["logIndex"] = "0xnothex"
        self.chain.add_payment(TX_HASH, logs=[bad, "not-a-log", log])

        assert self.verifier.verify(TX_HASH, self.challenge).amount_atomic == 50000

    def test_no_matching_transfer(self):
        """Transfers of another token do not count."""
        self.chain.add_payment(TX_HASH, logs=[transfer_log(CREATOR, 50000, token=OTHER_WALLET)])
        with pytest.raises(NoMatchingTransfer):
            self.verifier.verify(TX_HASH, self.challenge)

    def test_no_logs(self):
        self.chain.add_payment(TX_HASH, logs=[])
        with pytest.raises(NoMatchingTransfer):
            self.verifier.verify(TX_HASH, self.challenge)

    def test_removed_log_ignored(self):
        """Logs dropped by a reorg are not payments."""
        log = transfer_log(CREATOR, 50000)
        log["removed"] = True
        self.chain.add_payment(TX_HASH, logs=[log])
        with pytest.raises(NoMatchingTransfer):
            self.verifier.verify(TX_HASH, self.challenge)

    def test_wrong_recipient(self):
        self.chain.add_payment(TX_HASH, to=OTHER_WALLET, amount=50000)
        with pytest.raises(WrongRecipient) as exc_info:
            self.verifier.verify(TX_HASH, self.challenge)
        assert exc_info.value.details["actual"] == OTHER_WALLET
        assert self.store.get(self.challenge.id).status == ChallengeStatus.OPEN

    def test_underpayment_rejected(self):
        """49999 against 50000 is an AmountMismatch."""
        self.chain.add_payment(TX_HASH, amount=49999)
        with pytest.raises(AmountMismatch) as exc_info:
            self.verifier.verify(TX_HASH, self.challenge)
        assert exc_info.value.details == {
            "transaction_id": TX_HASH,
            "expected": "50000",
            "actual": "49999",
        }

    def test_overpayment_accepted(self):
        """60000 against 50000 is accepted with the paid amount."""
        self.chain.add_payment(TX_HASH, amount=60000)
        assert self.verifier.verify(TX_HASH, self.challenge).amount_atomic == 60000

    def test_picks_transfer_to_recipient_among_many(self):
        """Batched transfers: the one paying the creator counts."""
        logs = [
            transfer_log(OTHER_WALLET, 999999, log_index=0),
            transfer_log(CREATOR, 50000, log_index=1),
        ]
        self.chain.add_payment(TX_HASH, logs=logs)
        assert self.verifier.verify(TX_HASH, self.challenge).amount_atomic == 50000

    def test_expired_challenge_with_valid_payment(self):
        """A fully valid payment after expiresAt fails and expires the challenge."""
        self.chain.add_payment(TX_HASH, amount=50000)
        self.clock.advance(301)

        with pytest.raises(ChallengeExpired):
            self.verifier.verify(TX_HASH, self.challenge)

        assert self.store.get(self.challenge.id).status == ChallengeStatus.EXPIRED

    def test_rpc_failure_propagates(self):
        """Chain client failures surface unchanged."""

        class DownChain(FakeChainClient):
            def get_transaction(self, tx_hash):
                raise ChainRPCUnavailable("down")

        with pytest.raises(ChainRPCUnavailable):
            self._verifier(chain=DownChain()).verify(TX_HASH, self.challenge)
