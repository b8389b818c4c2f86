# app/api/endpoints/content.py
import json
import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse
from x402.encoding import safe_base64_encode

from app.api.dependencies import get_content_store, get_gate_controller
from app.api.models.content import (
    ContentCreateRequest,
    ContentCreateResponse,
    ContentSummary,
    PriceUpdateRequest,
    PriceUpdateResponse,
)
from app.core.config import settings
from app.paygate.errors import InvalidPrice
from app.paygate.gate import (
    PAYMENT_CHALLENGE_HEADER,
    PAYMENT_PROOF_HEADER,
    AccessOutcome,
    AccessResponse,
    GateController,
)
from app.services.content_store import ContentItem, ContentStore

logger = logging.getLogger(__name__)
router = APIRouter()

X_PAYMENT_RESPONSE_HEADER = "X-PAYMENT-RESPONSE"
PAYMENT_SCHEME = "x402-erc20"


def _summary(item: ContentItem) -> ContentSummary:
    return ContentSummary(
        id=item.id,
        title=item.title,
        excerpt=item.excerpt,
        contentType=item.content_type,
        creatorWallet=item.creator_wallet,
        priceUsd=str(item.price_usd),
        tags=item.tags,
        createdAt=item.created_at,
    )


def build_http_response(access: AccessResponse) -> JSONResponse:
    """
    Turn a gate answer into an HTTP response.

    402 responses that carry an open challenge also advertise it in
    X-Payment-* headers; 200 responses carry the settlement in the
    base64-encoded X-PAYMENT-RESPONSE header.
    """
    headers = {}

    if access.outcome == AccessOutcome.GRANTED:
        encoded = safe_base64_encode(json.dumps(access.body["payment"]).encode("utf-8"))
        headers[X_PAYMENT_RESPONSE_HEADER] = encoded
    elif "payment" in access.body:
        payment = access.body["payment"]
        headers.update({
            "X-Payment-Required": PAYMENT_SCHEME,
            "X-Payment-Amount": payment["amountAtomic"],
            "X-Payment-Recipient": payment["recipientAddress"],
            "X-Payment-Token": payment["tokenContract"],
            "X-Payment-Chain": str(payment["chainId"]),
            PAYMENT_CHALLENGE_HEADER: payment["challengeId"],
        })

    return JSONResponse(status_code=access.status_code, content=access.body, headers=headers)


@router.post("/", response_model=ContentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_content(
    request: ContentCreateRequest,
    store: ContentStore = Depends(get_content_store),
) -> ContentCreateResponse:
    """
    Register content behind the payment gate.

    The creator wallet receives the creator share of every payment.
    """
    item = store.create(
        title=request.title,
        body=request.content,
        content_type=request.contentType,
        creator_wallet=request.creatorWallet,
        price_usd=request.priceUsd,
        excerpt=request.excerpt,
        tags=request.tags,
    )
    return ContentCreateResponse(
        id=item.id,
        accessEndpoint=f"{settings.API_V1_STR}/content/{item.id}",
    )


@router.get("/", response_model=List[ContentSummary])
async def list_content(
    creator: Optional[str] = Query(None, description="Filter by creator wallet"),
    maxPrice: Optional[Decimal] = Query(None, gt=0, description="Maximum price in USD"),
    limit: int = Query(10, ge=1, le=100),
    store: ContentStore = Depends(get_content_store),
) -> List[ContentSummary]:
    """List registered content. Gated bodies are never included."""
    return [_summary(item) for item in store.list(creator, maxPrice, limit)]


@router.get("/{content_id}")
async def get_content(
    request: Request,
    content_id: str = Path(..., description="Content identifier"),
    store: ContentStore = Depends(get_content_store),
    gate: GateController = Depends(get_gate_controller),
) -> JSONResponse:
    """
    Pay-per-access content endpoint.

    Without the X-Payment-Proof header this answers 402 with a payment
    challenge. Retrying with X-Payment-Proof (transaction hash) and
    X-Payment-Challenge (challenge id) returns the content once the
    transfer is verified on-chain.

    Raises:
        HTTPException: 404 if the content does not exist, 500 if its price cannot be charged
    """
    item = store.get(content_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Content not found")

    proof = request.headers.get(PAYMENT_PROOF_HEADER)
    challenge_id = request.headers.get(PAYMENT_CHALLENGE_HEADER)

    try:
        # Verification does blocking RPC calls; keep them off the event loop
        access = await run_in_threadpool(
            gate.request_access,
            item.to_resource(),
            transaction_id=proof,
            challenge_id=challenge_id,
        )
    except InvalidPrice as e:
        logger.error(f"Content {content_id} has an unchargeable price: {e}")
        raise HTTPException(
            status_code=500,
            detail="Content price cannot be charged"
        )

    logger.info(f"Content {content_id} access: {access.outcome.value} ({access.status_code})")
    return build_http_response(access)


@router.put("/{content_id}/price", response_model=PriceUpdateResponse)
async def update_content_price(
    request: PriceUpdateRequest,
    content_id: str = Path(..., description="Content identifier"),
    store: ContentStore = Depends(get_content_store),
) -> PriceUpdateResponse:
    """
    Change the price of content.

    Applies to challenges issued from now on; open challenges keep their amount.

    Raises:
        HTTPException: 404 if the content does not exist, 403 if the wallet is not its creator
    """
    item = store.get(content_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Content not found")
    if item.creator_wallet.lower() != request.creatorWallet.lower():
        raise HTTPException(status_code=403, detail="Only the creator can change the price")

    updated = store.update_price(content_id, request.priceUsd)
    if updated is None:
        raise HTTPException(status_code=404, detail="Content not found")
    return PriceUpdateResponse(
        id=updated.id,
        priceUsd=str(updated.price_usd),
        updatedAt=updated.updated_at,
        message=f"Price updated to ${updated.price_usd} USD",
    )
