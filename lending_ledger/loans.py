"""
Loan Module

Borrower and Loan records. A borrower owns an ordered list of loans; historical
borrowers created before multi-loan support carry flat legacy loan fields instead,
which are migrated into the list (see migrations.py and BorrowerManager.add_loan).
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageRecord
from .errors import ValidationFailure


CENT = Decimal('0.01')

# Top-level document keys used by legacy single-loan borrowers
LEGACY_FIELDS = ('principal_amount', 'interest_amount', 'interest_is_percent', 'date_provided', 'notes')


class LoanStatus(Enum):
    """Advisory loan status (never gates collection logic)"""
    ACTIVE = "active"
    PAID_OFF = "paid_off"
    WRITTEN_OFF = "written_off"


def parse_amount(value: Any, field_name: str) -> Decimal:
    """Convert a numeric input to Decimal or raise ValidationFailure"""
    if isinstance(value, bool) or value is None:
        raise ValidationFailure(f"{field_name} must be a number", [field_name])
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailure(f"{field_name} must be a number", [field_name])
    if not amount.is_finite():
        raise ValidationFailure(f"{field_name} must be a number", [field_name])
    return amount


def parse_date(value: Any, field_name: str) -> date:
    """Accept a date, datetime or ISO-8601 string"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00')).date()
        except ValueError:
            pass
    raise ValidationFailure("Valid date is required", [field_name])


def calculate_monthly_interest(principal: Decimal, interest: Decimal, interest_is_percent: bool) -> Decimal:
    """
    Interest due per month.

    Percent loans: principal * rate / 100. Flat loans: the interest amount itself.
    """
    if interest_is_percent:
        amount = principal * interest / Decimal('100')
    else:
        amount = interest
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class Loan(StorageRecord):
    """One instance of principal extended to a borrower"""
    principal_amount: Decimal
    interest_amount: Decimal
    date_provided: date
    interest_is_percent: bool = False
    notes: str = ""
    status: LoanStatus = LoanStatus.ACTIVE

    @property
    def monthly_interest(self) -> Decimal:
        return calculate_monthly_interest(
            self.principal_amount, self.interest_amount, self.interest_is_percent
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'principal_amount': str(self.principal_amount),
            'interest_amount': str(self.interest_amount),
            'interest_is_percent': self.interest_is_percent,
            'date_provided': self.date_provided.isoformat(),
            'notes': self.notes,
            'status': self.status.value
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            principal_amount=Decimal(data['principal_amount']),
            interest_amount=Decimal(data['interest_amount']),
            interest_is_percent=bool(data.get('interest_is_percent', False)),
            date_provided=date.fromisoformat(data['date_provided']),
            notes=data.get('notes') or "",
            status=LoanStatus(data.get('status', LoanStatus.ACTIVE.value))
        )

    @classmethod
    def new(cls, principal_amount: Decimal, interest_amount: Decimal, date_provided: date,
            interest_is_percent: bool = False, notes: str = "") -> 'Loan':
        """Create a fresh active loan with a new identity"""
        now = datetime.now(timezone.utc)
        return cls(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            principal_amount=principal_amount,
            interest_amount=interest_amount,
            interest_is_percent=bool(interest_is_percent),
            date_provided=date_provided,
            notes=notes or "",
            status=LoanStatus.ACTIVE
        )


@dataclass
class LegacyLoanTerms:
    """Flat single-loan fields of a borrower created before multi-loan support"""
    principal_amount: Decimal
    interest_amount: Decimal
    date_provided: Optional[date] = None
    interest_is_percent: bool = False
    notes: str = ""

    @property
    def monthly_interest(self) -> Decimal:
        return calculate_monthly_interest(
            self.principal_amount, self.interest_amount, self.interest_is_percent
        )

    def to_loan(self, fallback_date: Optional[date] = None) -> Loan:
        """
        Carry the legacy values into a loan-list entry.

        Legacy documents written without a date take fallback_date instead.
        """
        provided = self.date_provided or fallback_date
        if provided is None:
            raise ValidationFailure("Legacy loan has no date provided", ['date_provided'])
        return Loan.new(
            principal_amount=self.principal_amount,
            interest_amount=self.interest_amount,
            date_provided=provided,
            interest_is_percent=self.interest_is_percent,
            notes=self.notes
        )


@dataclass
class Borrower(StorageRecord):
    """A person who has received funds from the ledger's user"""
    owner_id: str
    borrower_name: str
    loans: List[Loan] = field(default_factory=list)
    legacy_terms: Optional[LegacyLoanTerms] = None
    deleted: bool = False

    @property
    def has_legacy_loan(self) -> bool:
        return self.legacy_terms is not None

    @property
    def needs_migration(self) -> bool:
        """Legacy fields populated and nothing in the loan list yet"""
        return self.legacy_terms is not None and not self.loans

    @property
    def total_loans(self) -> int:
        """Legacy loan counts as one, plus every loan-list entry"""
        return len(self.loans) + (1 if self.legacy_terms else 0)

    @property
    def total_principal(self) -> Decimal:
        """Historical principal regardless of loan status"""
        total = sum((loan.principal_amount for loan in self.loans), Decimal('0'))
        if self.legacy_terms:
            total += self.legacy_terms.principal_amount
        return total

    def find_loan(self, loan_id: str) -> Optional[Loan]:
        for loan in self.loans:
            if loan.id == loan_id:
                return loan
        return None

    def monthly_interest_for(self, loan_id: Optional[str]) -> Optional[Decimal]:
        """
        Interest attributable to one collection of the given loan.

        A null loan id belongs to the legacy loan, or after migration to the
        first loan-list entry (the migrated legacy loan).
        """
        if loan_id:
            loan = self.find_loan(loan_id)
            return loan.monthly_interest if loan else None
        if self.legacy_terms:
            return self.legacy_terms.monthly_interest
        if self.loans:
            return self.loans[0].monthly_interest
        return None

    def migrate_legacy_loan(self) -> Optional[Loan]:
        """
        Move legacy fields into the loan list and clear them.

        Returns the migrated loan, or None when there is nothing to migrate.
        """
        if not self.needs_migration:
            return None
        loan = self.legacy_terms.to_loan(fallback_date=self.created_at.date())
        self.loans.append(loan)
        self.legacy_terms = None
        self.updated_at = datetime.now(timezone.utc)
        return loan

    def display_dict(self) -> Dict[str, Any]:
        """Borrower fields as shown to its owner"""
        data = self.to_dict()
        data.pop('owner_id', None)
        data.pop('deleted', None)
        data['total_principal'] = str(self.total_principal)
        data['total_loans'] = self.total_loans
        return data

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'owner_id': self.owner_id,
            'borrower_name': self.borrower_name,
            'loans': [loan.to_dict() for loan in self.loans],
            'deleted': self.deleted
        }

        # Cleared legacy fields are stored unset, the way migrated documents look
        legacy = self.legacy_terms
        result['principal_amount'] = str(legacy.principal_amount) if legacy else None
        result['interest_amount'] = str(legacy.interest_amount) if legacy else None
        result['interest_is_percent'] = legacy.interest_is_percent if legacy else False
        result['date_provided'] = legacy.date_provided.isoformat() if legacy and legacy.date_provided else None
        result['notes'] = legacy.notes if legacy else ""
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Borrower':
        legacy_terms = None
        if data.get('principal_amount') is not None:
            provided = data.get('date_provided')
            legacy_terms = LegacyLoanTerms(
                principal_amount=Decimal(str(data['principal_amount'])),
                interest_amount=Decimal(str(data.get('interest_amount') or '0')),
                date_provided=parse_date(provided, 'date_provided') if provided else None,
                interest_is_percent=bool(data.get('interest_is_percent', False)),
                notes=data.get('notes') or ""
            )

        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            borrower_name=data['borrower_name'],
            loans=[Loan.from_dict(loan) for loan in data.get('loans') or []],
            legacy_terms=legacy_terms,
            deleted=bool(data.get('deleted', False))
        )
