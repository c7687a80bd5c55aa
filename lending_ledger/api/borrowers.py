"""
Borrower endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import LedgerSystem, get_ledger_system, get_current_user
from .schemas import CreateBorrowerRequest, AddLoanRequest, UpdateBorrowerRequest, UpdateLoanStatusRequest
from ..errors import ValidationFailure


router = APIRouter()


@router.get("")
async def list_borrowers(
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the user's borrowers with their next pending due date"""
    borrowers = []
    for borrower, next_due in system.borrower_manager.list_borrowers(user_id):
        item = borrower.display_dict()
        item["next_due_date"] = next_due.isoformat() if next_due else None
        borrowers.append(item)

    return {"success": True, "data": borrowers, "count": len(borrowers)}


@router.get("/check-duplicate")
async def check_duplicate(
    borrower_name: str = "",
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Case-insensitive lookup of an existing borrower with the same name"""
    result = system.borrower_manager.check_duplicate(user_id, borrower_name)
    if not result.is_duplicate:
        return {"success": True, "is_duplicate": False}

    return {
        "success": True,
        "is_duplicate": True,
        "borrower": {
            "id": result.borrower_id,
            "borrower_name": result.borrower_name,
            "total_loans": result.total_loans,
            "created_at": result.created_at.isoformat()
        }
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_borrower(
    request: CreateBorrowerRequest,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Create a borrower with its first loan and schedule"""
    borrower = system.borrower_manager.create_borrower(
        owner_id=user_id,
        borrower_name=request.borrower_name,
        principal_amount=request.principal_amount,
        interest_amount=request.interest_amount,
        interest_is_percent=request.interest_is_percent,
        date_provided=request.date_provided,
        notes=request.notes or ""
    )
    return {"success": True, "message": "Borrower created successfully", "data": borrower.display_dict()}


@router.get("/{borrower_id}")
async def get_borrower(
    borrower_id: str,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    borrower = system.borrower_manager.get_borrower(user_id, borrower_id)
    return {"success": True, "data": borrower.display_dict()}


@router.put("/{borrower_id}")
async def update_borrower(
    borrower_id: str,
    request: UpdateBorrowerRequest,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Update the name, or the legacy loan fields of a legacy borrower"""
    changes = request.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationFailure("No fields to update")

    borrower = system.borrower_manager.update_borrower(user_id, borrower_id, **changes)
    return {"success": True, "message": "Borrower updated successfully", "data": borrower.display_dict()}


@router.delete("/{borrower_id}")
async def delete_borrower(
    borrower_id: str,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    system.borrower_manager.delete_borrower(user_id, borrower_id)
    return {"success": True, "message": "Borrower deleted successfully"}


@router.post("/{borrower_id}/loans", status_code=status.HTTP_201_CREATED)
async def add_loan(
    borrower_id: str,
    request: AddLoanRequest,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Add a loan to an existing borrower"""
    borrower, loan = system.borrower_manager.add_loan(
        owner_id=user_id,
        borrower_id=borrower_id,
        principal_amount=request.principal_amount,
        interest_amount=request.interest_amount,
        interest_is_percent=request.interest_is_percent,
        date_provided=request.date_provided,
        notes=request.notes or ""
    )
    return {
        "success": True,
        "message": "Loan added successfully to existing borrower",
        "data": {"borrower": borrower.display_dict(), "new_loan": loan.to_dict()}
    }


@router.put("/{borrower_id}/loans/{loan_id}/status")
async def update_loan_status(
    borrower_id: str,
    loan_id: str,
    request: UpdateLoanStatusRequest,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    loan = system.borrower_manager.update_loan_status(user_id, borrower_id, loan_id, request.status)
    return {"success": True, "message": "Loan status updated successfully", "data": loan.to_dict()}


@router.get("/{borrower_id}/collections")
async def get_borrower_collections(
    borrower_id: str,
    user_id: str = Depends(get_current_user),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """All of a borrower's interest collections, ascending by due date"""
    collections = system.borrower_manager.get_borrower_collections(user_id, borrower_id)
    data = [collection.to_dict() for collection in collections]
    return {"success": True, "data": data, "count": len(data)}
