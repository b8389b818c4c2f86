# app/api/models/content.py
import re
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List

WALLET_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


class ContentCreateRequest(BaseModel):
    """Request model for registering a piece of pay-per-access content."""
    title: str = Field(..., min_length=1, max_length=200, description="Content title")
    content: str = Field(..., min_length=1, description="The gated content itself")
    contentType: str = Field(default="article", description="Kind of content (article, newsletter, research, code)")
    creatorWallet: str = Field(..., description="Creator wallet that receives payments", example="0x" + "ab" * 20)
    priceUsd: Decimal = Field(..., gt=0, le=1000, description="Price per access in USD", example="0.05")
    excerpt: Optional[str] = Field(default=None, max_length=500, description="Free preview shown in listings")
    tags: List[str] = Field(default_factory=list, description="Search tags")

    @field_validator("creatorWallet")
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        if not WALLET_ADDRESS_RE.match(v):
            raise ValueError("creatorWallet must be a 0x-prefixed 20-byte hex address")
        return v


class ContentSummary(BaseModel):
    """Public listing entry; never includes the gated content."""
    id: str
    title: str
    excerpt: Optional[str] = None
    contentType: str
    creatorWallet: str
    priceUsd: str
    tags: List[str] = Field(default_factory=list)
    createdAt: datetime


class ContentCreateResponse(BaseModel):
    """Response model for content registration."""
    id: str = Field(..., description="Content identifier")
    accessEndpoint: str = Field(..., description="Pay-per-access endpoint for this content")
    message: str = Field(default="Content registered successfully")


class PriceUpdateRequest(BaseModel):
    """Request model for repricing content; only its creator may do so."""
    priceUsd: Decimal = Field(..., gt=0, le=1000, description="New price per access in USD", example="0.10")
    creatorWallet: str = Field(..., description="Wallet of the content's creator")

    @field_validator("creatorWallet")
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        if not WALLET_ADDRESS_RE.match(v):
            raise ValueError("creatorWallet must be a 0x-prefixed 20-byte hex address")
        return v


class PriceUpdateResponse(BaseModel):
    id: str
    priceUsd: str
    updatedAt: datetime
    message: str
