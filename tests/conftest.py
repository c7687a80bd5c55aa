"""
Shared fixtures: historical single-loan borrowers as they exist in older stores
"""

import uuid
from datetime import datetime, timezone, date

import pytest

from lending_ledger.collections import InterestCollection, COLLECTIONS_TABLE, BORROWERS_TABLE
from lending_ledger.schedule import monthly_due_dates


@pytest.fixture
def make_legacy_borrower():
    """Factory writing a legacy-shaped borrower document plus null-loan collections"""

    def _make(storage, owner_id="user-1", name="Legacy Larry", principal="10000",
              interest="2", percent=True, date_provided=date(2024, 1, 15),
              months=3, notes="old terms"):
        now = datetime.now(timezone.utc).isoformat()
        borrower_id = str(uuid.uuid4())
        storage.save(BORROWERS_TABLE, borrower_id, {
            "id": borrower_id,
            "created_at": now,
            "updated_at": now,
            "owner_id": owner_id,
            "borrower_name": name,
            "loans": [],
            "deleted": False,
            "principal_amount": principal,
            "interest_amount": interest,
            "interest_is_percent": percent,
            "date_provided": date_provided.isoformat() if date_provided else None,
            "notes": notes
        })
        for due_date in (monthly_due_dates(date_provided, months) if date_provided else []):
            collection = InterestCollection.scheduled(borrower_id, owner_id, due_date, loan_id=None)
            storage.save(COLLECTIONS_TABLE, collection.id, collection.to_dict())
        return borrower_id

    return _make
