# app/services/content_store.py
"""
In-memory keyed store of gated content.

Plain CRUD over creator content records; the payment gate only reads the
creator wallet and price from it.
"""
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from app.paygate.models import GatedResource

logger = logging.getLogger(__name__)


@dataclass
class ContentItem:
    id: str
    title: str
    body: str
    content_type: str
    creator_wallet: str
    price_usd: Decimal
    excerpt: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    def to_resource(self) -> GatedResource:
        return GatedResource(
            resource_id=self.id,
            recipient_address=self.creator_wallet,
            price=str(self.price_usd),
            payload={
                "id": self.id,
                "title": self.title,
                "content": self.body,
                "contentType": self.content_type,
                "creatorWallet": self.creator_wallet,
                "priceUsd": str(self.price_usd),
            },
        )


class ContentStore:
    """Thread-safe in-memory content records."""

    def __init__(self):
        self._items: Dict[str, ContentItem] = {}
        self._lock = threading.Lock()

    def create(
        self,
        title: str,
        body: str,
        content_type: str,
        creator_wallet: str,
        price_usd: Decimal,
        excerpt: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> ContentItem:
        item = ContentItem(
            id=str(uuid.uuid4()),
            title=title,
            body=body,
            content_type=content_type,
            creator_wallet=creator_wallet,
            price_usd=price_usd,
            excerpt=excerpt if excerpt is not None else body[:200],
            tags=list(tags or []),
        )
        with self._lock:
            self._items[item.id] = item
        logger.info(f"Registered content {item.id} by {creator_wallet} at ${price_usd}")
        return item

    def get(self, content_id: str) -> Optional[ContentItem]:
        with self._lock:
            return self._items.get(content_id)

    def list(
        self,
        creator_wallet: Optional[str] = None,
        max_price: Optional[Decimal] = None,
        limit: Optional[int] = 10,
    ) -> List[ContentItem]:
        with self._lock:
            items = list(self._items.values())
        if creator_wallet:
            items = [i for i in items if i.creator_wallet.lower() == creator_wallet.lower()]
        if max_price is not None:
            items = [i for i in items if i.price_usd <= max_price]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items[:limit]

    def update_price(self, content_id: str, price_usd: Decimal) -> Optional[ContentItem]:
        """
        Set a new price for future challenges.

        Challenges already issued keep the amount they were issued with.

        Returns:
            The updated item, or None if the content does not exist
        """
        with self._lock:
            item = self._items.get(content_id)
            if item is None:
                return None
            updated = replace(item, price_usd=price_usd, updated_at=datetime.now(timezone.utc))
            self._items[content_id] = updated
        logger.info(f"Content {content_id} repriced from ${item.price_usd} to ${price_usd}")
        return updated

    def clear(self) -> None:
        """Drop all content (useful for testing)."""
        with self._lock:
            self._items.clear()
