"""
Interest Collections Module

One expected monthly interest payment per loan per scheduled month, and the
state machine that records whether it was received.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .loans import Borrower, parse_amount
from .errors import NotFoundError, ValidationFailure
from .logging_config import get_logger, log_action


COLLECTIONS_TABLE = "interest_collections"
BORROWERS_TABLE = "borrowers"


class CollectionStatus(Enum):
    """Collection states"""
    PENDING = "pending"
    RECEIVED = "received"
    MISSED = "missed"          # Reserved, never assigned
    PROVIDED = "provided"      # Reserved, never assigned


RESERVED_STATUSES = (CollectionStatus.MISSED, CollectionStatus.PROVIDED)


@dataclass
class InterestCollection(StorageRecord):
    """A single scheduled monthly interest payment"""
    borrower_id: str
    owner_id: str
    due_date: date
    loan_id: Optional[str] = None
    collected_date: Optional[datetime] = None
    status: CollectionStatus = CollectionStatus.PENDING
    amount_collected: Decimal = Decimal('0')
    notes: str = ""
    archived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'borrower_id': self.borrower_id,
            'loan_id': self.loan_id,
            'owner_id': self.owner_id,
            'due_date': self.due_date.isoformat(),
            'collected_date': self.collected_date.isoformat() if self.collected_date else None,
            'status': self.status.value,
            'amount_collected': str(self.amount_collected),
            'notes': self.notes,
            'archived': self.archived
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InterestCollection':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            loan_id=data.get('loan_id'),
            owner_id=data['owner_id'],
            due_date=date.fromisoformat(data['due_date']),
            collected_date=datetime.fromisoformat(data['collected_date']) if data.get('collected_date') else None,
            status=CollectionStatus(data.get('status', CollectionStatus.PENDING.value)),
            amount_collected=Decimal(str(data.get('amount_collected') or '0')),
            notes=data.get('notes') or "",
            archived=bool(data.get('archived', False))
        )

    @classmethod
    def scheduled(cls, borrower_id: str, owner_id: str, due_date: date,
                  loan_id: Optional[str] = None) -> 'InterestCollection':
        """New pending record with nothing collected"""
        now = datetime.now(timezone.utc)
        return cls(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            owner_id=owner_id,
            due_date=due_date,
            loan_id=loan_id
        )


def visible(filters: Dict[str, Any]) -> Dict[str, Any]:
    """Add the predicate hiding collections of soft-deleted borrowers"""
    scoped = dict(filters)
    scoped['archived'] = {'$ne': True}
    return scoped


def parse_status(value: Union[str, CollectionStatus]) -> CollectionStatus:
    if isinstance(value, CollectionStatus):
        return value
    try:
        return CollectionStatus(value)
    except ValueError:
        raise ValidationFailure(f"Invalid collection status: {value}", ['status'])


def _to_utc(value: Union[str, date, datetime]) -> datetime:
    """Normalize a collected date to an aware UTC datetime"""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise ValidationFailure("Invalid collected date", ['collected_date'])
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValidationFailure("Invalid collected date", ['collected_date'])


def enrich_with_borrowers(storage: StorageInterface,
                          collections: List[InterestCollection]) -> List[Dict[str, Any]]:
    """Serialize collections with their borrower's display fields attached"""
    borrowers: Dict[str, Optional[Borrower]] = {}
    enriched = []
    for collection in collections:
        if collection.borrower_id not in borrowers:
            data = storage.load(BORROWERS_TABLE, collection.borrower_id)
            borrowers[collection.borrower_id] = Borrower.from_dict(data) if data else None
        borrower = borrowers[collection.borrower_id]

        item = collection.to_dict()
        item['borrower'] = borrower.display_dict() if borrower else None
        enriched.append(item)
    return enriched


class CollectionManager:
    """
    Owner-scoped access to interest collections and their status transitions
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.collections_table = COLLECTIONS_TABLE
        self.borrowers_table = BORROWERS_TABLE
        self.logger = get_logger("lending_ledger.collections")

    def get_collection(self, owner_id: str, collection_id: str) -> InterestCollection:
        data = self.storage.load(self.collections_table, collection_id)
        if not data or data.get('owner_id') != owner_id or data.get('archived'):
            raise NotFoundError(f"Collection {collection_id} not found")
        return InterestCollection.from_dict(data)

    def list_collections(
        self,
        owner_id: str,
        status: Optional[Union[str, CollectionStatus]] = None,
        due_on: Optional[date] = None,
        borrower_id: Optional[str] = None
    ) -> List[InterestCollection]:
        """Owner's collections, ascending by due date"""
        filters: Dict[str, Any] = {'owner_id': owner_id}
        if status is not None:
            filters['status'] = parse_status(status).value
        if due_on is not None:
            filters['due_date'] = due_on.isoformat()
        if borrower_id is not None:
            filters['borrower_id'] = borrower_id

        records = self.storage.find(self.collections_table, visible(filters), sort_by='due_date')
        return [InterestCollection.from_dict(r) for r in records]

    def enrich(self, collections: List[InterestCollection]) -> List[Dict[str, Any]]:
        return enrich_with_borrowers(self.storage, collections)

    def mark_collected(
        self,
        owner_id: str,
        collection_id: str,
        collected_date: Optional[Union[str, date, datetime]] = None,
        amount_collected: Optional[Any] = None,
        notes: Optional[str] = None
    ) -> InterestCollection:
        """
        Record a collection as received.

        Without an explicit amount the owning loan's monthly interest is used;
        collections with no loan id fall back to the borrower's legacy terms.
        """
        collection = self.get_collection(owner_id, collection_id)
        self._check_transition(collection, CollectionStatus.RECEIVED)

        if amount_collected is None:
            amount = self._default_amount(collection)
        else:
            amount = parse_amount(amount_collected, 'amount_collected')
            if amount < 0:
                raise ValidationFailure("Amount collected cannot be negative", ['amount_collected'])

        collected_at = _to_utc(collected_date) if collected_date is not None else datetime.now(timezone.utc)

        collection.status = CollectionStatus.RECEIVED
        collection.collected_date = collected_at
        collection.amount_collected = amount
        if notes is not None:
            collection.notes = notes
        collection.updated_at = datetime.now(timezone.utc)

        self._save_collection(collection)

        log_action(
            self.logger, "info", "Interest collection marked received",
            user_id=owner_id, action="collection_received",
            resource=f"collection:{collection.id}",
            extra={
                "borrower_id": collection.borrower_id,
                "loan_id": collection.loan_id,
                "amount_collected": str(amount),
                "due_date": collection.due_date.isoformat()
            }
        )
        return collection

    def mark_pending(self, owner_id: str, collection_id: str) -> InterestCollection:
        """Undo a receipt: clears collected date and amount, keeps notes"""
        collection = self.get_collection(owner_id, collection_id)
        self._check_transition(collection, CollectionStatus.PENDING)

        collection.status = CollectionStatus.PENDING
        collection.collected_date = None
        collection.amount_collected = Decimal('0')
        collection.updated_at = datetime.now(timezone.utc)

        self._save_collection(collection)

        log_action(
            self.logger, "info", "Interest collection reverted to pending",
            user_id=owner_id, action="collection_reverted",
            resource=f"collection:{collection.id}",
            extra={"borrower_id": collection.borrower_id, "loan_id": collection.loan_id}
        )
        return collection

    def collections_for_borrower(self, borrower_id: str,
                                 include_archived: bool = False) -> List[InterestCollection]:
        filters: Dict[str, Any] = {'borrower_id': borrower_id}
        if not include_archived:
            filters = visible(filters)
        records = self.storage.find(self.collections_table, filters, sort_by='due_date')
        return [InterestCollection.from_dict(r) for r in records]

    def relink_legacy_collections(self, borrower_id: str, loan_id: str) -> int:
        """Attach a borrower's null-loan collections to the given loan"""
        records = self.storage.find(self.collections_table, {'borrower_id': borrower_id, 'loan_id': None})
        now = datetime.now(timezone.utc).isoformat()
        for record in records:
            record['loan_id'] = loan_id
            record['updated_at'] = now
        if records:
            self.storage.save_many(self.collections_table, records)
        return len(records)

    def archive_for_borrower(self, borrower_id: str) -> int:
        """Hide every collection of a soft-deleted borrower"""
        records = self.storage.find(self.collections_table, visible({'borrower_id': borrower_id}))
        now = datetime.now(timezone.utc).isoformat()
        for record in records:
            record['archived'] = True
            record['updated_at'] = now
        if records:
            self.storage.save_many(self.collections_table, records)
        return len(records)

    def _check_transition(self, collection: InterestCollection, target: CollectionStatus) -> None:
        # pending <-> received, re-marking the same state is tolerated
        if collection.status in RESERVED_STATUSES:
            raise ValidationFailure(
                f"Collection {collection.id} is {collection.status.value} and cannot be marked {target.value}",
                ['status']
            )

    def _default_amount(self, collection: InterestCollection) -> Decimal:
        data = self.storage.load(self.borrowers_table, collection.borrower_id)
        if not data:
            return Decimal('0')
        interest = Borrower.from_dict(data).monthly_interest_for(collection.loan_id)
        return interest if interest is not None else Decimal('0')

    def _save_collection(self, collection: InterestCollection) -> None:
        self.storage.save(self.collections_table, collection.id, collection.to_dict())
