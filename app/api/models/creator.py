# app/api/models/creator.py
from datetime import datetime
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Optional

from app.api.models.content import WALLET_ADDRESS_RE


class CreatorOnboardRequest(BaseModel):
    """Request model for onboarding a creator."""
    username: str = Field(..., min_length=3, max_length=40, pattern=r"^[A-Za-z0-9_-]+$", description="Unique public handle")
    walletAddress: str = Field(..., description="Wallet that receives the creator share", example="0x" + "ab" * 20)
    email: Optional[str] = Field(default=None, max_length=254)
    contentTypes: List[str] = Field(default_factory=list, description="e.g. articles, newsletters, research, code")
    platforms: List[str] = Field(default_factory=list, description="e.g. substack, medium, github")
    bio: Optional[str] = Field(default=None, max_length=1000)
    website: Optional[str] = Field(default=None, max_length=500)

    @field_validator("walletAddress")
    @classmethod
    def validate_wallet(cls, v: str) -> str:
        if not WALLET_ADDRESS_RE.match(v):
            raise ValueError("walletAddress must be a 0x-prefixed 20-byte hex address")
        return v


class CreatorProfile(BaseModel):
    """Public creator profile with content counts."""
    username: str
    walletAddress: str
    bio: Optional[str] = None
    website: Optional[str] = None
    contentTypes: List[str] = Field(default_factory=list)
    platforms: List[str] = Field(default_factory=list)
    contentCount: int = 0
    avgPriceUsd: Optional[str] = None
    createdAt: datetime


class CreatorOnboardResponse(BaseModel):
    id: str
    profile: CreatorProfile
    contentEndpoint: str = Field(..., description="Listing of this creator's content")
    message: str = Field(default="Creator onboarded successfully")


class CreatorAnalytics(BaseModel):
    username: str
    content: Dict[str, Any]
    payments: Dict[str, Any]
    period: str
