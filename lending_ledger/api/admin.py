"""
Admin endpoints (user activity, system statistics and reminder delivery history)
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query

from .auth import LedgerSystem, get_ledger_system, require_admin
from .schemas import UpdateUserStatusRequest
from ..errors import ValidationFailure
from ..notifications import NotificationStatus


router = APIRouter()


@router.get("/users")
async def list_users(
    admin_id: str = Depends(require_admin),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """All users with borrower and collection counts"""
    users = system.user_directory.list_users_with_stats()
    return {"success": True, "data": users, "count": len(users)}


@router.get("/stats")
async def get_stats(
    admin_id: str = Depends(require_admin),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"success": True, "data": system.user_directory.system_stats()}


@router.put("/users/{user_id}/status")
async def update_user_status(
    user_id: str,
    request: UpdateUserStatusRequest,
    admin_id: str = Depends(require_admin),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Activate or deactivate a user"""
    user = system.user_directory.set_user_status(admin_id, user_id, request.is_active)
    return {
        "success": True,
        "message": f"User {'activated' if user.is_active else 'deactivated'} successfully",
        "data": {"id": user.id, "name": user.name, "email": user.email, "is_active": user.is_active}
    }


@router.get("/users/{user_id}/activity")
async def get_user_activity(
    user_id: str,
    admin_id: str = Depends(require_admin),
    system: LedgerSystem = Depends(get_ledger_system)
):
    return {"success": True, "data": system.user_directory.user_activity(user_id)}


@router.get("/notifications/stats")
async def get_notification_stats(
    admin_id: str = Depends(require_admin),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Delivery counts per status and per channel"""
    return {"success": True, "data": system.notification_engine.get_delivery_stats()}


@router.get("/users/{user_id}/notifications")
async def get_user_notifications(
    user_id: str,
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    admin_id: str = Depends(require_admin),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """A user's reminder delivery history, newest first"""
    system.user_directory.get_user(user_id)
    try:
        status_filter = NotificationStatus(status) if status else None
    except ValueError:
        raise ValidationFailure(f"Invalid notification status: {status}", ["status"])

    engine = system.notification_engine
    notifications = engine.get_notifications(user_id, status=status_filter, limit=limit)
    data = [engine.notification_to_dict(notification) for notification in notifications]
    return {"success": True, "data": data, "count": len(data)}
