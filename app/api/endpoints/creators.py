# app/api/endpoints/creators.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Path, status

from app.api.dependencies import get_content_store, get_creator_store, get_gate_controller
from app.api.models.creator import (
    CreatorAnalytics,
    CreatorOnboardRequest,
    CreatorOnboardResponse,
    CreatorProfile,
)
from app.core.config import settings
from app.paygate.gate import GateController
from app.services.content_store import ContentStore
from app.services.creator_store import (
    Creator,
    CreatorExistsError,
    CreatorStore,
    content_stats,
    creator_analytics,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _profile(creator: Creator, content_store: ContentStore) -> CreatorProfile:
    stats = content_stats(creator, content_store)
    return CreatorProfile(
        username=creator.username,
        walletAddress=creator.wallet_address,
        bio=creator.bio,
        website=creator.website,
        contentTypes=creator.content_types,
        platforms=creator.platforms,
        contentCount=stats["total_content"],
        avgPriceUsd=stats["avg_price_usd"],
        createdAt=creator.created_at,
    )


def _get_creator_or_404(username: str, creators: CreatorStore) -> Creator:
    creator = creators.get(username)
    if creator is None:
        raise HTTPException(status_code=404, detail="Creator not found")
    return creator


@router.post("/", response_model=CreatorOnboardResponse, status_code=status.HTTP_201_CREATED)
async def onboard_creator(
    request: CreatorOnboardRequest,
    creators: CreatorStore = Depends(get_creator_store),
    content_store: ContentStore = Depends(get_content_store),
) -> CreatorOnboardResponse:
    """
    Onboard a creator.

    Raises:
        HTTPException: 409 if the username or wallet is already onboarded
    """
    try:
        creator = creators.onboard(
            username=request.username,
            wallet_address=request.walletAddress,
            email=request.email,
            content_types=request.contentTypes,
            platforms=request.platforms,
            bio=request.bio,
            website=request.website,
        )
    except CreatorExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return CreatorOnboardResponse(
        id=creator.id,
        profile=_profile(creator, content_store),
        contentEndpoint=f"{settings.API_V1_STR}/content/?creator={creator.wallet_address}",
    )


@router.get("/{username}", response_model=CreatorProfile)
async def get_creator(
    username: str = Path(..., description="Creator username"),
    creators: CreatorStore = Depends(get_creator_store),
    content_store: ContentStore = Depends(get_content_store),
) -> CreatorProfile:
    """Public profile of a creator."""
    return _profile(_get_creator_or_404(username, creators), content_store)


@router.get("/{username}/analytics", response_model=CreatorAnalytics)
async def get_creator_analytics(
    username: str = Path(..., description="Creator username"),
    creators: CreatorStore = Depends(get_creator_store),
    content_store: ContentStore = Depends(get_content_store),
    gate: GateController = Depends(get_gate_controller),
) -> CreatorAnalytics:
    """Content and payment statistics for the last 30 days, in token atomic units."""
    creator = _get_creator_or_404(username, creators)
    analytics = creator_analytics(creator, content_store, gate.ledger, now=gate.now())
    return CreatorAnalytics(username=creator.username, **analytics)
