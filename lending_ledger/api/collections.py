"""
Interest collection endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_current_user
from .schemas import MarkCollectedRequest


router = APIRouter()


@router.get("")
async def list_collections(
    status: Optional[str] = None,
    due_date: Optional[date] = None,
    borrower_id: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the user's collections, optionally filtered"""
    collections = system.collection_manager.list_collections(
        user_id, status=status, due_on=due_date, borrower_id=borrower_id
    )
    data = system.collection_manager.enrich(collections)
    return {"success": True, "data": data, "count": len(data)}


@router.get("/dashboard/summary")
async def dashboard_summary(
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    summary = system.reporting_engine.dashboard_summary(user_id)
    return {"success": True, "data": summary.to_dict()}


@router.put("/{collection_id}/mark-collected")
async def mark_collected(
    collection_id: str,
    request: Optional[MarkCollectedRequest] = None,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Record a collection as received"""
    request = request or MarkCollectedRequest()
    collection = system.collection_manager.mark_collected(
        user_id,
        collection_id,
        collected_date=request.collected_date,
        amount_collected=request.amount_collected,
        notes=request.notes
    )
    return {
        "success": True,
        "message": "Collection marked as received",
        "data": system.collection_manager.enrich([collection])[0]
    }


@router.put("/{collection_id}/mark-pending")
async def mark_pending(
    collection_id: str,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Revert a received collection to pending"""
    collection = system.collection_manager.mark_pending(user_id, collection_id)
    return {
        "success": True,
        "message": "Collection marked as pending",
        "data": system.collection_manager.enrich([collection])[0]
    }
