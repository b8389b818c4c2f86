# tests/test_paygate_challenges.py
"""
Unit tests for challenge issuance and the challenge store.
"""
import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from app.paygate.challenges import ChallengeIssuer, ChallengeStore, to_atomic_units
from app.paygate.errors import (
    ChallengeAlreadyConsumed,
    ChallengeExpired,
    ChallengeNotFound,
    InvalidPrice,
)
from app.paygate.models import ChallengeStatus
from tests.paygate_fakes import CHAIN_ID, CREATOR, TOKEN, TX_HASH, OTHER_TX_HASH, FakeClock


class TestToAtomicUnits:
    """Test decimal price to atomic unit conversion."""

    def test_five_cents_six_decimals(self):
        """0.05 with a 6-decimal token is 50000 units."""
        assert to_atomic_units("0.05", 6) == 50000

    def test_float_input_has_no_drift(self):
        """Floats go through their string form."""
        assert to_atomic_units(0.05, 6) == 50000
        assert to_atomic_units(0.1, 6) == 100000
        assert to_atomic_units(1.15, 6) == 1150000

    def test_decimal_and_int_inputs(self):
        assert to_atomic_units(Decimal("2.5"), 6) == 2500000
        assert to_atomic_units(3, 6) == 3000000

    def test_rounds_half_up(self):
        """Half a unit rounds up, anything less rounds down."""
        assert to_atomic_units("0.0000005", 6) == 1
        assert to_atomic_units("0.0000015", 6) == 2
        assert to_atomic_units("0.00000149", 6) == 1
        assert to_atomic_units("1.2345675", 6) == 1234568

    def test_long_prices_round_once(self):
        """Prices longer than the default decimal precision still round half-up exactly."""
        assert to_atomic_units("0.05000049999999999999999999999999", 6) == 50000
        assert to_atomic_units("0.05000050000000000000000000000000", 6) == 50001
        assert to_atomic_units("123456789012345678901234567890.0000005", 6) == 123456789012345678901234567890000001

    def test_price_beyond_uint256_rejected(self):
        with pytest.raises(InvalidPrice):
            to_atomic_units("1E+80", 6)
        with pytest.raises(InvalidPrice):
            to_atomic_units(str(2 ** 256), 0)

    def test_eighteen_decimals(self):
        assert to_atomic_units("0.05", 18) == 50_000_000_000_000_000

    @pytest.mark.parametrize("price", ["0", "-1", 0, -0.05, "abc", "", "NaN", "Infinity", None, True])
    def test_invalid_prices_rejected(self, price):
        """Non-positive or non-numeric prices raise InvalidPrice."""
        with pytest.raises(InvalidPrice):
            to_atomic_units(price, 6)

    def test_price_below_smallest_unit_rejected(self):
        """A price that rounds to zero units cannot be charged."""
        with pytest.raises(InvalidPrice):
            to_atomic_units("0.0000004", 6)


class TestChallengeIssuer:
    """Test challenge issuance."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = ChallengeStore()
        self.issuer = ChallengeIssuer(self.store, token_contract=TOKEN, chain_id=CHAIN_ID, clock=self.clock)

    def test_issue_sets_fields(self):
        """Issued challenge carries amount, recipient, token and expiry."""
        challenge = self.issuer.issue("article-1", CREATOR, "0.05", token_decimals=6)

        assert challenge.resource_id == "article-1"
        assert challenge.recipient_address == CREATOR
        assert challenge.token_contract == TOKEN
        assert challenge.chain_id == CHAIN_ID
        assert challenge.amount_atomic == 50000
        assert challenge.issued_at == self.clock.now
        assert challenge.expires_at == self.clock.now + timedelta(seconds=300)
        assert challenge.status == ChallengeStatus.OPEN

    def test_issue_stores_challenge(self):
        """The challenge can be looked up by id afterwards."""
        challenge = self.issuer.issue("article-1", CREATOR, "0.05", token_decimals=6)
        assert self.store.get(challenge.id) == challenge

    def test_custom_ttl(self):
        challenge = self.issuer.issue("article-1", CREATOR, "0.05", token_decimals=6, ttl_seconds=60)
        assert challenge.expires_at - challenge.issued_at == timedelta(seconds=60)

    def test_ids_are_unique(self):
        ids = {self.issuer.issue("a", CREATOR, "1", 6).id for _ in range(200)}
        assert len(ids) == 200

    def test_invalid_price(self):
        """Zero price raises InvalidPrice and stores nothing."""
        with pytest.raises(InvalidPrice):
            self.issuer.issue("article-1", CREATOR, "0", token_decimals=6)
        assert self.store.count_by_status()["open"] == 0

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValueError):
            self.issuer.issue("article-1", CREATOR, "0.05", token_decimals=6, ttl_seconds=0)


class TestChallengeStore:
    """Test challenge status transitions."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = ChallengeStore()
        self.issuer = ChallengeIssuer(self.store, token_contract=TOKEN, chain_id=CHAIN_ID, clock=self.clock)
        self.challenge = self.issuer.issue("article-1", CREATOR, "0.05", token_decimals=6)

    def test_get_unknown_returns_none(self):
        assert self.store.get("missing") is None

    def test_get_returns_snapshot(self):
        """Mutating a returned challenge does not change the store."""
        snapshot = self.store.get(self.challenge.id)
        snapshot.status = ChallengeStatus.CONSUMED
        assert self.store.get(self.challenge.id).status == ChallengeStatus.OPEN

    def test_duplicate_add_rejected(self):
        with pytest.raises(ValueError):
            self.store.add(self.challenge)

    def test_consume_open(self):
        """OPEN -> CONSUMED records the consuming transaction."""
        consumed = self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        assert consumed.status == ChallengeStatus.CONSUMED
        assert consumed.consumed_by == TX_HASH

    def test_consume_same_transaction_twice(self):
        """Re-consuming with the same transaction is a no-op."""
        self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        again = self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        assert again.consumed_by == TX_HASH

    def test_consume_by_other_transaction_rejected(self):
        """A challenge is single-use."""
        self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        with pytest.raises(ChallengeAlreadyConsumed):
            self.store.consume(self.challenge.id, OTHER_TX_HASH, self.clock.now)

    def test_consume_unknown(self):
        with pytest.raises(ChallengeNotFound):
            self.store.consume("missing", TX_HASH, self.clock.now)

    def test_consume_after_expiry_expires(self):
        """Settlement after expiresAt loses to expiry."""
        self.clock.advance(301)
        with pytest.raises(ChallengeExpired):
            self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        assert self.store.get(self.challenge.id).status == ChallengeStatus.EXPIRED

    def test_consume_at_exact_expiry_allowed(self):
        """The challenge is valid up to and including expiresAt."""
        self.clock.advance(300)
        consumed = self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        assert consumed.status == ChallengeStatus.CONSUMED

    def test_expire_before_expiry_is_noop(self):
        assert self.store.expire(self.challenge.id, self.clock.now) is False
        assert self.store.get(self.challenge.id).status == ChallengeStatus.OPEN

    def test_expire_is_terminal(self):
        """Once EXPIRED, the challenge cannot be consumed."""
        self.clock.advance(301)
        assert self.store.expire(self.challenge.id, self.clock.now) is True
        with pytest.raises(ChallengeExpired):
            self.store.consume(self.challenge.id, TX_HASH, self.clock.now)

    def test_expire_does_not_touch_consumed(self):
        """CONSUMED is terminal too."""
        self.store.consume(self.challenge.id, TX_HASH, self.clock.now)
        self.clock.advance(301)
        assert self.store.expire(self.challenge.id, self.clock.now) is False
        assert self.store.get(self.challenge.id).status == ChallengeStatus.CONSUMED

    def test_sweep_expired(self):
        """Sweep expires only overdue OPEN challenges."""
        consumed = self.issuer.issue("article-2", CREATOR, "0.05", 6)
        self.store.consume(consumed.id, TX_HASH, self.clock.now)
        self.clock.advance(200)
        fresh = self.issuer.issue("article-3", CREATOR, "0.05", 6)
        self.clock.advance(101)

        expired = self.store.sweep_expired(self.clock.now)

        assert expired == [self.challenge.id]
        assert self.store.get(fresh.id).status == ChallengeStatus.OPEN
        assert self.store.count_by_status() == {"open": 1, "consumed": 1, "expired": 1}

    def test_concurrent_consume_single_winner(self):
        """Many transactions racing for one challenge: exactly one wins."""
        winners = []
        losers = []
        barrier = threading.Barrier(8)

        def attempt(i):
            tx = "0x" + format(i, "064x")
            barrier.wait()
            try:
                self.store.consume(self.challenge.id, tx, self.clock.now)
                winners.append(tx)
            except ChallengeAlreadyConsumed:
                losers.append(tx)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 7
        assert self.store.get(self.challenge.id).consumed_by == winners[0]
