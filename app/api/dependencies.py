# app/api/dependencies.py
"""
Builds the payment gate from settings.

This is the only place configuration reaches the gate components; each is
created once per process and shared by all requests, since the challenge
store and the ledger hold the protocol state.
"""
import logging
import threading
from typing import Optional

from app.core.config import settings
from app.paygate.chain import JsonRpcChainClient
from app.paygate.challenges import ChallengeIssuer, ChallengeStore
from app.paygate.gate import GateController
from app.paygate.ledger import SettlementLedger
from app.paygate.verifier import TransactionVerifier
from app.services.content_store import ContentStore
from app.services.creator_store import CreatorStore

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_gate_controller: Optional[GateController] = None
_content_store: Optional[ContentStore] = None
_creator_store: Optional[CreatorStore] = None


def build_gate_controller() -> GateController:
    """Create a gate controller wired from the current settings."""
    store = ChallengeStore()
    chain_client = JsonRpcChainClient(
        rpc_url=str(settings.CHAIN_RPC_URL),
        timeout=settings.RPC_TIMEOUT_SECONDS,
        max_retries=settings.RPC_MAX_RETRIES,
        backoff_seconds=settings.RPC_BACKOFF_SECONDS,
    )
    issuer = ChallengeIssuer(
        store=store,
        token_contract=settings.TOKEN_CONTRACT_ADDRESS,
        chain_id=settings.CHAIN_ID,
        default_ttl_seconds=settings.CHALLENGE_TTL_SECONDS,
    )
    verifier = TransactionVerifier(
        chain_client=chain_client,
        token_contract=settings.TOKEN_CONTRACT_ADDRESS,
        required_confirmations=settings.REQUIRED_CONFIRMATIONS,
        confirmation_polls=settings.CONFIRMATION_POLLS,
        backoff_seconds=settings.RPC_BACKOFF_SECONDS,
        challenge_store=store,
    )
    ledger = SettlementLedger(challenge_store=store, platform_fee_bps=settings.PLATFORM_FEE_BPS)

    logger.info(
        f"Payment gate ready: chain={settings.CHAIN_ID} token={settings.TOKEN_CONTRACT_ADDRESS} "
        f"fee={settings.PLATFORM_FEE_BPS}bps ttl={settings.CHALLENGE_TTL_SECONDS}s "
        f"confirmations={settings.REQUIRED_CONFIRMATIONS}"
    )
    return GateController(
        issuer=issuer,
        verifier=verifier,
        ledger=ledger,
        token_decimals=settings.TOKEN_DECIMALS,
        challenge_ttl_seconds=settings.CHALLENGE_TTL_SECONDS,
    )


def get_gate_controller() -> GateController:
    """Get or create the process-wide gate controller."""
    global _gate_controller
    if _gate_controller is None:
        with _lock:
            if _gate_controller is None:
                _gate_controller = build_gate_controller()
    return _gate_controller


def get_content_store() -> ContentStore:
    """Get or create the process-wide content store."""
    global _content_store
    if _content_store is None:
        with _lock:
            if _content_store is None:
                _content_store = ContentStore()
    return _content_store


def get_creator_store() -> CreatorStore:
    """Get or create the process-wide creator store."""
    global _creator_store
    if _creator_store is None:
        with _lock:
            if _creator_store is None:
                _creator_store = CreatorStore()
    return _creator_store


def reset_dependencies() -> None:
    """Drop all shared state (useful for testing)."""
    global _gate_controller, _content_store, _creator_store
    with _lock:
        _gate_controller = None
        _content_store = None
        _creator_store = None
