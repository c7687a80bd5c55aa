"""
Loan Ledger Module

Borrower lifecycle: creation with the first loan, adding loans, duplicate
detection, updates and soft deletion. Every operation is scoped to the owning
user; a borrower owned by someone else is indistinguishable from a missing one.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import uuid

from .storage import StorageInterface
from .loans import Borrower, Loan, LoanStatus, LEGACY_FIELDS, parse_amount, parse_date
from .collections import CollectionManager, InterestCollection, BORROWERS_TABLE
from .schedule import ScheduleGenerator
from .reporting import next_pending_due_date
from .errors import NotFoundError, ValidationFailure
from .logging_config import get_logger, log_action


logger = get_logger("lending_ledger.borrowers")


@dataclass
class DuplicateCheck:
    """Result of a case-insensitive name lookup"""
    is_duplicate: bool
    borrower_id: Optional[str] = None
    borrower_name: Optional[str] = None
    total_loans: int = 0
    created_at: Optional[datetime] = None


def validate_loan_terms(principal_amount: Any, interest_amount: Any,
                        date_provided: Any) -> Tuple[Decimal, Decimal, date]:
    """Validate new-loan inputs, reporting every offending field at once"""
    errors = []
    principal = interest = provided = None

    try:
        principal = parse_amount(principal_amount, 'principal_amount')
        if principal <= 0:
            errors.append(('principal_amount', "Principal amount must be greater than zero"))
    except ValidationFailure:
        errors.append(('principal_amount', "Principal amount must be a number"))

    try:
        interest = parse_amount(interest_amount, 'interest_amount')
        if interest < 0:
            errors.append(('interest_amount', "Interest amount cannot be negative"))
    except ValidationFailure:
        errors.append(('interest_amount', "Interest amount must be a number"))

    try:
        provided = parse_date(date_provided, 'date_provided')
    except ValidationFailure:
        errors.append(('date_provided', "Valid date is required"))

    if errors:
        raise ValidationFailure(errors[0][1], [name for name, _ in errors])
    return principal, interest, provided


def migrate_legacy_borrower(storage: StorageInterface, borrower: Borrower,
                            collection_manager: Optional[CollectionManager] = None) -> Optional[Loan]:
    """
    Move a borrower's legacy loan into its loan list.

    Saves the borrower and re-links its null-loan collections to the migrated
    loan. Returns None when the borrower has nothing to migrate, so calling it
    again is harmless.
    """
    loan = borrower.migrate_legacy_loan()
    if loan is None:
        return None

    collections = collection_manager or CollectionManager(storage)
    with storage.atomic():
        storage.save(BORROWERS_TABLE, borrower.id, borrower.to_dict())
        relinked = collections.relink_legacy_collections(borrower.id, loan.id)

    log_action(
        logger, "info", "Legacy loan migrated to loan list",
        user_id=borrower.owner_id, action="legacy_loan_migrated",
        resource=f"borrower:{borrower.id}",
        extra={"loan_id": loan.id, "collections_relinked": relinked}
    )
    return loan


class BorrowerManager:
    """
    Manages borrowers and the loans they hold
    """

    def __init__(
        self,
        storage: StorageInterface,
        schedule_generator: ScheduleGenerator,
        collection_manager: Optional[CollectionManager] = None
    ):
        self.storage = storage
        self.schedule_generator = schedule_generator
        self.collection_manager = collection_manager or CollectionManager(storage)
        self.borrowers_table = BORROWERS_TABLE

    def create_borrower(
        self,
        owner_id: str,
        borrower_name: str,
        principal_amount: Any,
        interest_amount: Any,
        date_provided: Any,
        interest_is_percent: bool = False,
        notes: str = ""
    ) -> Borrower:
        """
        Create a borrower holding its first loan, and schedule that loan's collections
        """
        name = (borrower_name or "").strip()
        try:
            principal, interest, provided = validate_loan_terms(principal_amount, interest_amount, date_provided)
        except ValidationFailure as e:
            if not name:
                raise ValidationFailure("Borrower name is required", ['borrower_name'] + e.fields)
            raise
        if not name:
            raise ValidationFailure("Borrower name is required", ['borrower_name'])

        loan = Loan.new(
            principal_amount=principal,
            interest_amount=interest,
            date_provided=provided,
            interest_is_percent=interest_is_percent,
            notes=notes
        )
        now = datetime.now(timezone.utc)
        borrower = Borrower(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            owner_id=owner_id,
            borrower_name=name,
            loans=[loan]
        )

        with self.storage.atomic():
            self._save_borrower(borrower)
            self.schedule_generator.generate_monthly_collections(
                borrower, provided, loan_id=loan.id
            )

        log_action(
            logger, "info", "Borrower created",
            user_id=owner_id, action="borrower_created",
            resource=f"borrower:{borrower.id}",
            extra={
                "loan_id": loan.id,
                "principal_amount": str(principal),
                "interest_amount": str(interest),
                "interest_is_percent": loan.interest_is_percent
            }
        )
        return borrower

    def add_loan(
        self,
        owner_id: str,
        borrower_id: str,
        principal_amount: Any,
        interest_amount: Any,
        date_provided: Any,
        interest_is_percent: bool = False,
        notes: str = ""
    ) -> Tuple[Borrower, Loan]:
        """
        Append a loan to an existing borrower.

        A borrower still holding a legacy loan has it migrated into the loan list
        first, so the result never mixes both shapes.
        """
        borrower = self.get_borrower(owner_id, borrower_id)
        principal, interest, provided = validate_loan_terms(principal_amount, interest_amount, date_provided)

        loan = Loan.new(
            principal_amount=principal,
            interest_amount=interest,
            date_provided=provided,
            interest_is_percent=interest_is_percent,
            notes=notes
        )

        with self.storage.atomic():
            migrate_legacy_borrower(self.storage, borrower, self.collection_manager)

            borrower.loans.append(loan)
            borrower.updated_at = datetime.now(timezone.utc)
            self._save_borrower(borrower)

            self.schedule_generator.generate_monthly_collections(
                borrower, provided, loan_id=loan.id
            )

        log_action(
            logger, "info", "Loan added to borrower",
            user_id=owner_id, action="loan_added",
            resource=f"borrower:{borrower.id}",
            extra={
                "loan_id": loan.id,
                "principal_amount": str(principal),
                "total_loans": borrower.total_loans
            }
        )
        return borrower, loan

    def check_duplicate(self, owner_id: str, borrower_name: str) -> DuplicateCheck:
        """Case-insensitive exact name match among the owner's borrowers"""
        name = (borrower_name or "").strip()
        if not name:
            raise ValidationFailure("Borrower name is required", ['borrower_name'])

        wanted = name.casefold()
        for borrower in self._owned_borrowers(owner_id):
            if borrower.borrower_name.strip().casefold() == wanted:
                return DuplicateCheck(
                    is_duplicate=True,
                    borrower_id=borrower.id,
                    borrower_name=borrower.borrower_name,
                    total_loans=borrower.total_loans,
                    created_at=borrower.created_at
                )
        return DuplicateCheck(is_duplicate=False)

    def get_borrower(self, owner_id: str, borrower_id: str) -> Borrower:
        data = self.storage.load(self.borrowers_table, borrower_id)
        if not data or data.get('owner_id') != owner_id or data.get('deleted'):
            raise NotFoundError(f"Borrower {borrower_id} not found")
        return Borrower.from_dict(data)

    def list_borrowers(self, owner_id: str) -> List[Tuple[Borrower, Optional[date]]]:
        """Non-deleted borrowers, newest first, each with its next pending due date"""
        return [
            (borrower, next_pending_due_date(self.storage, borrower.id))
            for borrower in self._owned_borrowers(owner_id)
        ]

    def update_borrower(self, owner_id: str, borrower_id: str, **changes) -> Borrower:
        """
        Update the borrower's name and, for legacy borrowers, the legacy loan fields.

        The loan list is never modified here.
        """
        unknown = [key for key in changes if key != 'borrower_name' and key not in LEGACY_FIELDS]
        if unknown:
            raise ValidationFailure(f"Cannot update fields: {', '.join(unknown)}", unknown)

        borrower = self.get_borrower(owner_id, borrower_id)

        legacy_changes = {k: v for k, v in changes.items() if k in LEGACY_FIELDS}
        if legacy_changes and not borrower.has_legacy_loan:
            fields = sorted(legacy_changes)
            raise ValidationFailure(
                "Loan fields belong to individual loans on this borrower", fields
            )

        if 'borrower_name' in changes:
            name = (changes['borrower_name'] or "").strip()
            if not name:
                raise ValidationFailure("Borrower name is required", ['borrower_name'])
            borrower.borrower_name = name

        terms = borrower.legacy_terms
        if 'principal_amount' in legacy_changes:
            principal = parse_amount(legacy_changes['principal_amount'], 'principal_amount')
            if principal < 0:
                raise ValidationFailure("Principal amount cannot be negative", ['principal_amount'])
            terms.principal_amount = principal
        if 'interest_amount' in legacy_changes:
            interest = parse_amount(legacy_changes['interest_amount'], 'interest_amount')
            if interest < 0:
                raise ValidationFailure("Interest amount cannot be negative", ['interest_amount'])
            terms.interest_amount = interest
        if 'interest_is_percent' in legacy_changes:
            terms.interest_is_percent = bool(legacy_changes['interest_is_percent'])
        if 'date_provided' in legacy_changes:
            terms.date_provided = parse_date(legacy_changes['date_provided'], 'date_provided')
        if 'notes' in legacy_changes:
            terms.notes = legacy_changes['notes'] or ""

        borrower.updated_at = datetime.now(timezone.utc)
        self._save_borrower(borrower)

        log_action(
            logger, "info", "Borrower updated",
            user_id=owner_id, action="borrower_updated",
            resource=f"borrower:{borrower.id}",
            extra={"fields": sorted(changes)}
        )
        return borrower

    def update_loan_status(self, owner_id: str, borrower_id: str, loan_id: str, status: Any) -> Loan:
        """Set a loan's advisory status"""
        try:
            new_status = status if isinstance(status, LoanStatus) else LoanStatus(status)
        except ValueError:
            raise ValidationFailure(f"Invalid loan status: {status}", ['status'])

        borrower = self.get_borrower(owner_id, borrower_id)
        loan = borrower.find_loan(loan_id)
        if loan is None:
            raise NotFoundError(f"Loan {loan_id} not found")

        now = datetime.now(timezone.utc)
        loan.status = new_status
        loan.updated_at = now
        borrower.updated_at = now
        self._save_borrower(borrower)

        log_action(
            logger, "info", f"Loan status set to {new_status.value}",
            user_id=owner_id, action="loan_status_changed",
            resource=f"loan:{loan.id}",
            extra={"borrower_id": borrower.id, "status": new_status.value}
        )
        return loan

    def delete_borrower(self, owner_id: str, borrower_id: str) -> Borrower:
        """Soft delete; the borrower's collections are archived with it"""
        borrower = self.get_borrower(owner_id, borrower_id)
        borrower.deleted = True
        borrower.updated_at = datetime.now(timezone.utc)

        with self.storage.atomic():
            self._save_borrower(borrower)
            archived = self.collection_manager.archive_for_borrower(borrower.id)

        log_action(
            logger, "info", "Borrower deleted",
            user_id=owner_id, action="borrower_deleted",
            resource=f"borrower:{borrower.id}",
            extra={"collections_archived": archived}
        )
        return borrower

    def get_borrower_collections(self, owner_id: str, borrower_id: str) -> List[InterestCollection]:
        """All of a borrower's collections, ascending by due date"""
        borrower = self.get_borrower(owner_id, borrower_id)
        return self.collection_manager.collections_for_borrower(borrower.id)

    def _owned_borrowers(self, owner_id: str) -> List[Borrower]:
        records = self.storage.find(
            self.borrowers_table,
            {'owner_id': owner_id, 'deleted': False},
            sort_by='created_at',
            descending=True
        )
        return [Borrower.from_dict(r) for r in records]

    def _save_borrower(self, borrower: Borrower) -> None:
        self.storage.save(self.borrowers_table, borrower.id, borrower.to_dict())
