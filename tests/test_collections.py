"""
Tests for interest collection status transitions and queries
"""

import pytest
from datetime import date, datetime, timezone, timedelta
from decimal import Decimal

from lending_ledger.storage import InMemoryStorage
from lending_ledger.collections import (
    CollectionManager, CollectionStatus, InterestCollection, COLLECTIONS_TABLE
)
from lending_ledger.schedule import ScheduleGenerator
from lending_ledger.borrowers import BorrowerManager
from lending_ledger.errors import NotFoundError, ValidationFailure


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def collections(storage):
    return CollectionManager(storage)


@pytest.fixture
def borrowers(storage, collections):
    return BorrowerManager(storage, ScheduleGenerator(storage, months_count=3), collections)


@pytest.fixture
def percent_borrower(borrowers):
    return borrowers.create_borrower(
        owner_id="user-1", borrower_name="Percy", principal_amount="10000",
        interest_amount="2", interest_is_percent=True, date_provided=date(2024, 1, 15)
    )


@pytest.fixture
def flat_borrower(borrowers):
    return borrowers.create_borrower(
        owner_id="user-1", borrower_name="Flo", principal_amount="5000",
        interest_amount="500", interest_is_percent=False, date_provided=date(2024, 1, 10)
    )


def _first_collection(collections, borrower_id, owner_id="user-1"):
    return collections.list_collections(owner_id, borrower_id=borrower_id)[0]


class TestMarkCollected:

    def test_percent_loan_default_amount(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)

        result = collections.mark_collected("user-1", collection.id)

        assert result.status == CollectionStatus.RECEIVED
        assert result.amount_collected == Decimal("200.00")
        assert result.collected_date is not None
        assert result.collected_date.tzinfo is not None

    def test_flat_loan_default_amount(self, collections, flat_borrower):
        collection = _first_collection(collections, flat_borrower.id)
        result = collections.mark_collected("user-1", collection.id)
        assert result.amount_collected == Decimal("500.00")

    def test_legacy_collection_uses_legacy_terms(self, storage, collections, make_legacy_borrower):
        borrower_id = make_legacy_borrower(storage, principal="8000", interest="1.5", percent=True)
        collection = _first_collection(collections, borrower_id)
        assert collection.loan_id is None

        result = collections.mark_collected("user-1", collection.id)
        assert result.amount_collected == Decimal("120.00")

    def test_explicit_amount_and_date(self, storage, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)

        result = collections.mark_collected(
            "user-1", collection.id, collected_date="2024-02-16T08:30:00Z",
            amount_collected="150", notes="partial"
        )

        assert result.amount_collected == Decimal("150")
        assert result.collected_date == datetime(2024, 2, 16, 8, 30, tzinfo=timezone.utc)
        stored = storage.load(COLLECTIONS_TABLE, collection.id)
        assert stored["status"] == "received"
        assert stored["notes"] == "partial"
        assert stored["amount_collected"] == "150"

    def test_naive_and_date_inputs_are_utc(self, collections, percent_borrower):
        first, second = collections.list_collections("user-1", borrower_id=percent_borrower.id)[:2]

        naive = collections.mark_collected("user-1", first.id, collected_date=datetime(2024, 2, 15, 12, 0))
        assert naive.collected_date == datetime(2024, 2, 15, 12, 0, tzinfo=timezone.utc)

        plain = collections.mark_collected("user-1", second.id, collected_date=date(2024, 3, 15))
        assert plain.collected_date == datetime(2024, 3, 15, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        aware = datetime(2024, 2, 15, 10, 0, tzinfo=timezone(timedelta(hours=5)))

        result = collections.mark_collected("user-1", collection.id, collected_date=aware)

        assert result.collected_date == datetime(2024, 2, 15, 5, 0, tzinfo=timezone.utc)
        assert result.collected_date.utcoffset() == timedelta(0)

    def test_negative_amount_rejected(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        with pytest.raises(ValidationFailure) as exc_info:
            collections.mark_collected("user-1", collection.id, amount_collected="-1")
        assert exc_info.value.fields == ["amount_collected"]

    def test_invalid_date_rejected(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        with pytest.raises(ValidationFailure):
            collections.mark_collected("user-1", collection.id, collected_date="yesterday")

    def test_remark_received_is_allowed(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        collections.mark_collected("user-1", collection.id, amount_collected="100")
        again = collections.mark_collected("user-1", collection.id, amount_collected="120")
        assert again.amount_collected == Decimal("120")


class TestMarkPending:

    def test_round_trip_keeps_notes(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        collections.mark_collected("user-1", collection.id, amount_collected="300", notes="cash")

        reverted = collections.mark_pending("user-1", collection.id)

        assert reverted.status == CollectionStatus.PENDING
        assert reverted.collected_date is None
        assert reverted.amount_collected == Decimal("0")
        assert reverted.notes == "cash"

    def test_pending_to_pending(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        assert collections.mark_pending("user-1", collection.id).status == CollectionStatus.PENDING


class TestReservedStatuses:

    @pytest.mark.parametrize("status", [CollectionStatus.MISSED, CollectionStatus.PROVIDED])
    def test_reserved_status_cannot_transition(self, storage, collections, percent_borrower, status):
        collection = _first_collection(collections, percent_borrower.id)
        record = storage.load(COLLECTIONS_TABLE, collection.id)
        record["status"] = status.value
        storage.save(COLLECTIONS_TABLE, collection.id, record)

        with pytest.raises(ValidationFailure):
            collections.mark_collected("user-1", collection.id)
        with pytest.raises(ValidationFailure):
            collections.mark_pending("user-1", collection.id)


class TestQueries:

    def test_filters(self, collections, percent_borrower, flat_borrower):
        everything = collections.list_collections("user-1")
        assert len(everything) == 6
        due_dates = [c.due_date for c in everything]
        assert due_dates == sorted(due_dates)

        by_borrower = collections.list_collections("user-1", borrower_id=flat_borrower.id)
        assert {c.borrower_id for c in by_borrower} == {flat_borrower.id}

        on_day = collections.list_collections("user-1", due_on=date(2024, 2, 15))
        assert [c.borrower_id for c in on_day] == [percent_borrower.id]

        collections.mark_collected("user-1", by_borrower[0].id)
        assert len(collections.list_collections("user-1", status="received")) == 1
        assert len(collections.list_collections("user-1", status=CollectionStatus.PENDING)) == 5

    def test_invalid_status_filter(self, collections):
        with pytest.raises(ValidationFailure):
            collections.list_collections("user-1", status="lost")

    def test_enrich_attaches_borrower(self, collections, percent_borrower):
        enriched = collections.enrich(collections.list_collections("user-1", borrower_id=percent_borrower.id))
        assert enriched[0]["borrower"]["borrower_name"] == "Percy"
        assert enriched[0]["borrower"]["total_loans"] == 1
        assert "owner_id" not in enriched[0]["borrower"]

    def test_enrich_missing_borrower(self, storage, collections):
        orphan = InterestCollection.scheduled("gone", "user-1", date(2024, 5, 1))
        storage.save(COLLECTIONS_TABLE, orphan.id, orphan.to_dict())
        assert collections.enrich([orphan])[0]["borrower"] is None

    def test_other_owner_cannot_touch(self, collections, percent_borrower):
        collection = _first_collection(collections, percent_borrower.id)
        assert collections.list_collections("user-2") == []
        with pytest.raises(NotFoundError):
            collections.get_collection("user-2", collection.id)
        with pytest.raises(NotFoundError):
            collections.mark_collected("user-2", collection.id)
        with pytest.raises(NotFoundError):
            collections.mark_pending("user-2", collection.id)

    def test_unknown_collection(self, collections):
        with pytest.raises(NotFoundError):
            collections.mark_collected("user-1", "missing")


class TestBorrowerHousekeeping:

    def test_relink_legacy_collections(self, storage, collections, make_legacy_borrower):
        borrower_id = make_legacy_borrower(storage, months=4)
        assert collections.relink_legacy_collections(borrower_id, "loan-x") == 4
        assert {c.loan_id for c in collections.collections_for_borrower(borrower_id)} == {"loan-x"}
        assert collections.relink_legacy_collections(borrower_id, "loan-y") == 0

    def test_archive_hides_collections(self, collections, percent_borrower):
        assert collections.archive_for_borrower(percent_borrower.id) == 3
        assert collections.collections_for_borrower(percent_borrower.id) == []
        assert len(collections.collections_for_borrower(percent_borrower.id, include_archived=True)) == 3
