"""
Schedule Generator Module

Produces the monthly interest-collection schedule for a loan.
"""

from datetime import date
from typing import List, Optional
import calendar

from .storage import StorageInterface
from .loans import Borrower
from .collections import InterestCollection, COLLECTIONS_TABLE
from .errors import ValidationFailure
from .logging_config import get_logger, log_action


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping to the last day of a shorter target month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def monthly_due_dates(start_date: date, months_count: int = 12) -> List[date]:
    """Due dates one through months_count months after start_date"""
    if months_count < 1:
        raise ValidationFailure("months_count must be at least 1", ['months_count'])
    return [add_months(start_date, i) for i in range(1, months_count + 1)]


class ScheduleGenerator:
    """Creates pending collection records for a loan"""

    def __init__(self, storage: StorageInterface, months_count: int = 12):
        self.storage = storage
        self.months_count = months_count
        self.collections_table = COLLECTIONS_TABLE
        self.logger = get_logger("lending_ledger.schedule")

    def generate_monthly_collections(
        self,
        borrower: Borrower,
        start_date: date,
        months_count: Optional[int] = None,
        loan_id: Optional[str] = None
    ) -> List[InterestCollection]:
        """
        Build and bulk-insert one pending collection per month.

        The first collection falls one month after start_date. All records carry
        amount 0 until collected.
        """
        count = self.months_count if months_count is None else months_count
        due_dates = monthly_due_dates(start_date, count)

        collections = [
            InterestCollection.scheduled(
                borrower_id=borrower.id,
                owner_id=borrower.owner_id,
                due_date=due_date,
                loan_id=loan_id
            )
            for due_date in due_dates
        ]

        self.storage.save_many(self.collections_table, [c.to_dict() for c in collections])

        log_action(
            self.logger, "debug", f"Generated {len(collections)} monthly collections",
            user_id=borrower.owner_id, action="schedule_generated",
            resource=f"borrower:{borrower.id}",
            extra={
                "loan_id": loan_id,
                "first_due_date": due_dates[0].isoformat(),
                "last_due_date": due_dates[-1].isoformat()
            }
        )
        return collections
