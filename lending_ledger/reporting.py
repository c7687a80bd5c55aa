"""
Reporting Module

Read-only aggregations over borrowers and interest collections: dashboard
figures, upcoming and overdue lists, and the cross-user reminder buckets.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, time, timedelta
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .storage import StorageInterface
from .loans import Borrower
from .collections import (
    InterestCollection, CollectionStatus, enrich_with_borrowers, visible,
    COLLECTIONS_TABLE, BORROWERS_TABLE
)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def next_pending_due_date(storage: StorageInterface, borrower_id: str) -> Optional[date]:
    """Earliest pending due date across all of a borrower's loans"""
    records = storage.find(
        COLLECTIONS_TABLE,
        visible({'borrower_id': borrower_id, 'status': CollectionStatus.PENDING.value}),
        sort_by='due_date',
        limit=1
    )
    if not records:
        return None
    return date.fromisoformat(records[0]['due_date'])


@dataclass
class DashboardSummary:
    """Figures shown on a user's dashboard"""
    total_borrowers: int
    total_lent: Decimal
    total_interest_this_month: Decimal
    due_today: int
    upcoming_count: int
    overdue_count: int
    upcoming: List[Dict[str, Any]] = field(default_factory=list)
    overdue: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_borrowers': self.total_borrowers,
            'total_lent': str(self.total_lent),
            'total_interest_this_month': str(self.total_interest_this_month),
            'due_today': self.due_today,
            'upcoming_count': self.upcoming_count,
            'overdue_count': self.overdue_count,
            'upcoming': self.upcoming,
            'overdue': self.overdue
        }


@dataclass
class ReminderItem:
    """A pending collection resolved to its borrower and expected amount"""
    collection: InterestCollection
    borrower: Borrower
    amount: Decimal

    @property
    def owner_id(self) -> str:
        return self.collection.owner_id


class ReportingEngine:
    """
    Aggregation engine over the ledger's collections.

    Every method takes an explicit ``today`` (UTC calendar date) so results are
    reproducible; due dates are compared at day granularity.
    """

    def __init__(self, storage: StorageInterface, upcoming_window_days: int = 2,
                 upcoming_limit: int = 10):
        self.storage = storage
        self.upcoming_window_days = upcoming_window_days
        self.upcoming_limit = upcoming_limit
        self.collections_table = COLLECTIONS_TABLE
        self.borrowers_table = BORROWERS_TABLE

    def next_due_date(self, borrower_id: str) -> Optional[date]:
        return next_pending_due_date(self.storage, borrower_id)

    def total_borrowers(self, owner_id: str) -> int:
        return self.storage.count(self.borrowers_table, {'owner_id': owner_id, 'deleted': False})

    def total_lent(self, owner_id: str) -> Decimal:
        """Principal across every loan of every non-deleted borrower, status ignored"""
        records = self.storage.find(self.borrowers_table, {'owner_id': owner_id, 'deleted': False})
        return sum((Borrower.from_dict(r).total_principal for r in records), Decimal('0'))

    def interest_collected_this_month(self, owner_id: str, today: Optional[date] = None) -> Decimal:
        today = today or utc_today()
        month_start = datetime.combine(today.replace(day=1), time.min, tzinfo=timezone.utc)
        return self.storage.sum_field(
            self.collections_table,
            'amount_collected',
            visible({
                'owner_id': owner_id,
                'status': CollectionStatus.RECEIVED.value,
                'collected_date': {'$gte': month_start.isoformat()}
            })
        )

    def due_today_count(self, owner_id: str, today: Optional[date] = None) -> int:
        today = today or utc_today()
        return self.storage.count(
            self.collections_table,
            visible({
                'owner_id': owner_id,
                'status': CollectionStatus.PENDING.value,
                'due_date': today.isoformat()
            })
        )

    def upcoming(self, owner_id: str, today: Optional[date] = None,
                 limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Pending collections due from today through the end of the window"""
        today = today or utc_today()
        window_end = today + timedelta(days=self.upcoming_window_days)
        records = self.storage.find(
            self.collections_table,
            visible({
                'owner_id': owner_id,
                'status': CollectionStatus.PENDING.value,
                'due_date': {'$gte': today.isoformat(), '$lte': window_end.isoformat()}
            }),
            sort_by='due_date',
            limit=self.upcoming_limit if limit is None else limit
        )
        return enrich_with_borrowers(self.storage, [InterestCollection.from_dict(r) for r in records])

    def overdue(self, owner_id: str, today: Optional[date] = None) -> List[Dict[str, Any]]:
        """Pending collections due before today"""
        today = today or utc_today()
        records = self.storage.find(
            self.collections_table,
            visible({
                'owner_id': owner_id,
                'status': CollectionStatus.PENDING.value,
                'due_date': {'$lt': today.isoformat()}
            }),
            sort_by='due_date'
        )
        return enrich_with_borrowers(self.storage, [InterestCollection.from_dict(r) for r in records])

    def dashboard_summary(self, owner_id: str, today: Optional[date] = None) -> DashboardSummary:
        today = today or utc_today()
        upcoming = self.upcoming(owner_id, today)
        overdue = self.overdue(owner_id, today)

        return DashboardSummary(
            total_borrowers=self.total_borrowers(owner_id),
            total_lent=self.total_lent(owner_id),
            total_interest_this_month=self.interest_collected_this_month(owner_id, today),
            due_today=self.due_today_count(owner_id, today),
            upcoming_count=len(upcoming),
            overdue_count=len(overdue),
            upcoming=upcoming,
            overdue=overdue
        )

    def reminder_buckets(self, today: Optional[date] = None) -> Dict[str, List[ReminderItem]]:
        """
        Pending collections of all users, bucketed for reminders:
        due in exactly two days, due today, and overdue.
        """
        today = today or utc_today()
        two_days = today + timedelta(days=2)
        pending = CollectionStatus.PENDING.value

        queries = {
            'two_days': {'status': pending, 'due_date': two_days.isoformat()},
            'today': {'status': pending, 'due_date': today.isoformat()},
            'overdue': {'status': pending, 'due_date': {'$lt': today.isoformat()}}
        }

        borrowers: Dict[str, Optional[Borrower]] = {}
        buckets: Dict[str, List[ReminderItem]] = {}
        for bucket, filters in queries.items():
            items = []
            for record in self.storage.find(self.collections_table, visible(filters), sort_by='due_date'):
                collection = InterestCollection.from_dict(record)
                borrower = self._cached_borrower(borrowers, collection.borrower_id)
                if borrower is None or borrower.deleted:
                    continue
                amount = borrower.monthly_interest_for(collection.loan_id)
                items.append(ReminderItem(
                    collection=collection,
                    borrower=borrower,
                    amount=amount if amount is not None else Decimal('0')
                ))
            buckets[bucket] = items
        return buckets

    def _cached_borrower(self, cache: Dict[str, Optional[Borrower]], borrower_id: str) -> Optional[Borrower]:
        if borrower_id not in cache:
            data = self.storage.load(self.borrowers_table, borrower_id)
            cache[borrower_id] = Borrower.from_dict(data) if data else None
        return cache[borrower_id]
