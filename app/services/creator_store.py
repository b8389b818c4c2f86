# app/services/creator_store.py
"""
In-memory creator profiles and per-creator analytics.

A creator is identified by a unique username and a unique payout wallet;
content registered with that wallet belongs to the creator.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.paygate.ledger import SettlementLedger
from app.services.content_store import ContentStore

logger = logging.getLogger(__name__)

ANALYTICS_PERIOD_DAYS = 30


class CreatorExistsError(ValueError):
    """Raised when a username or wallet is already onboarded."""


@dataclass
class Creator:
    id: str
    username: str
    wallet_address: str
    email: Optional[str] = None
    content_types: List[str] = field(default_factory=list)
    platforms: List[str] = field(default_factory=list)
    bio: Optional[str] = None
    website: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class CreatorStore:
    """Thread-safe in-memory creator records keyed by username."""

    def __init__(self):
        self._creators: Dict[str, Creator] = {}
        self._lock = threading.Lock()

    def onboard(
        self,
        username: str,
        wallet_address: str,
        email: Optional[str] = None,
        content_types: Optional[List[str]] = None,
        platforms: Optional[List[str]] = None,
        bio: Optional[str] = None,
        website: Optional[str] = None,
    ) -> Creator:
        """
        Register a new creator.

        Raises:
            CreatorExistsError: If the username or wallet is already taken
        """
        creator = Creator(
            id=str(uuid.uuid4()),
            username=username,
            wallet_address=wallet_address,
            email=email,
            content_types=list(content_types or []),
            platforms=list(platforms or []),
            bio=bio,
            website=website,
        )
        wallet = wallet_address.lower()
        with self._lock:
            if username.lower() in self._creators:
                raise CreatorExistsError(f"Username {username} is already taken")
            if any(c.wallet_address.lower() == wallet for c in self._creators.values()):
                raise CreatorExistsError(f"Wallet {wallet_address} is already onboarded")
            self._creators[username.lower()] = creator
        logger.info(f"Onboarded creator {username} with wallet {wallet_address}")
        return creator

    def get(self, username: str) -> Optional[Creator]:
        with self._lock:
            return self._creators.get(username.lower())

    def clear(self) -> None:
        """Drop all creators (useful for testing)."""
        with self._lock:
            self._creators.clear()


def content_stats(creator: Creator, content_store: ContentStore) -> Dict[str, Any]:
    """Count and average price of the creator's content."""
    items = content_store.list(creator_wallet=creator.wallet_address, limit=None)
    average: Optional[Decimal] = None
    if items:
        average = sum((item.price_usd for item in items), Decimal(0)) / len(items)
    return {
        "total_content": len(items),
        "avg_price_usd": str(average.quantize(Decimal("0.000001"))) if average is not None else None,
    }


def creator_analytics(
    creator: Creator,
    content_store: ContentStore,
    ledger: SettlementLedger,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Content and settlement statistics for one creator.

    Payment figures cover the last 30 days and are in token atomic units.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=ANALYTICS_PERIOD_DAYS)
    records = [r for r in ledger.records_for_recipient(creator.wallet_address) if r.verified_at >= since]

    revenue = sum(r.creator_amount for r in records)
    return {
        "content": content_stats(creator, content_store),
        "payments": {
            "total_payments": len(records),
            "total_revenue": str(revenue),
            "avg_payment": str(revenue // len(records)) if records else None,
            "monetized_content": len({r.resource_id for r in records}),
        },
        "period": f"last_{ANALYTICS_PERIOD_DAYS}_days",
    }
