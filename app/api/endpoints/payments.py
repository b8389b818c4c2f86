# app/api/endpoints/payments.py
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query

from app.api.dependencies import get_gate_controller
from app.paygate.audit import AuditEventType, get_audit_stats, read_audit_log
from app.paygate.gate import GateController

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/stats")
async def get_payment_stats(gate: GateController = Depends(get_gate_controller)) -> Dict[str, Any]:
    """
    Settlement totals, overall and per creator wallet, plus challenge counts.

    Amounts are in token atomic units.
    """
    summary = gate.ledger.earnings_summary()
    return {
        "total_payments": summary["total_payments"],
        "total_amount": str(summary["total_amount"]),
        "total_platform_fee": str(summary["total_platform_fee"]),
        "by_creator": {
            wallet: {key: (str(value) if key != "payments" else value) for key, value in entry.items()}
            for wallet, entry in summary["by_recipient"].items()
        },
        "challenges": gate.challenges.count_by_status(),
    }


@router.get("/settlements/{transaction_id}")
async def get_settlement(
    transaction_id: str = Path(..., description="Settled transaction hash"),
    gate: GateController = Depends(get_gate_controller),
) -> Dict[str, Any]:
    """Look up the settlement record of a transaction."""
    record = gate.ledger.get(transaction_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Settlement not found")
    return record.to_dict()


@router.post("/challenges/sweep")
async def sweep_expired_challenges(gate: GateController = Depends(get_gate_controller)) -> Dict[str, Any]:
    """Expire all open challenges past their expiry."""
    expired = gate.sweep_expired()
    return {"expired": expired, "count": len(expired)}


@router.get("/audit")
async def get_audit(
    limit: int = Query(100, ge=1, le=1000),
    event_type: Optional[str] = Query(None, description="Filter by audit event type"),
) -> Dict[str, Any]:
    """Recent payment audit events (most recent first) and log statistics."""
    event_filter = None
    if event_type:
        try:
            event_filter = AuditEventType(event_type)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown event type: {event_type}")
    return {
        "events": read_audit_log(max_entries=limit, event_type=event_filter),
        "stats": get_audit_stats(),
    }
