"""
Data Migration System

Versioned one-time migrations over the stored documents. Applied versions are
recorded in the schema_migrations table so each runs exactly once per store.
"""

from typing import Callable, List, Optional, Dict, Any
from datetime import datetime, timezone
import hashlib
import logging

from .storage import StorageInterface
from .loans import Borrower
from .collections import CollectionManager, COLLECTIONS_TABLE, BORROWERS_TABLE
from .borrowers import migrate_legacy_borrower


logger = logging.getLogger(__name__)


MigrationStep = Callable[[StorageInterface], int]


class Migration:
    """A single data migration; ``apply`` returns the number of records changed"""

    def __init__(self, version: int, name: str, apply: MigrationStep):
        self.version = version
        self.name = name
        self.apply = apply
        self.applied_at: Optional[datetime] = None

    @property
    def checksum(self) -> str:
        return hashlib.md5(f"{self.version}:{self.name}".encode()).hexdigest()

    def __str__(self) -> str:
        return f"Migration v{self.version:03d}: {self.name}"

    def __repr__(self) -> str:
        return f"Migration(version={self.version}, name='{self.name}')"


def migrate_legacy_loans(storage: StorageInterface) -> int:
    """Move every borrower's legacy loan into its loan list"""
    collections = CollectionManager(storage)
    migrated = 0
    for data in storage.load_all(BORROWERS_TABLE):
        borrower = Borrower.from_dict(data)
        if migrate_legacy_borrower(storage, borrower, collections) is not None:
            migrated += 1
    return migrated


def link_orphan_collections(storage: StorageInterface) -> int:
    """Assign collections with no loan id to their borrower's first loan"""
    linked = 0
    borrowers: Dict[str, Optional[Borrower]] = {}
    updates = []
    for record in storage.find(COLLECTIONS_TABLE, {'loan_id': None}):
        borrower_id = record['borrower_id']
        if borrower_id not in borrowers:
            data = storage.load(BORROWERS_TABLE, borrower_id)
            borrowers[borrower_id] = Borrower.from_dict(data) if data else None
        borrower = borrowers[borrower_id]
        if borrower is None or not borrower.loans:
            continue
        record['loan_id'] = borrower.loans[0].id
        record['updated_at'] = datetime.now(timezone.utc).isoformat()
        updates.append(record)
        linked += 1

    if updates:
        storage.save_many(COLLECTIONS_TABLE, updates)
    return linked


def archive_deleted_borrower_collections(storage: StorageInterface) -> int:
    """Archive collections left behind by borrowers deleted before archiving existed"""
    collections = CollectionManager(storage)
    archived = 0
    for data in storage.find(BORROWERS_TABLE, {'deleted': True}):
        archived += collections.archive_for_borrower(data['id'])
    return archived


class MigrationManager:
    """Manages data migrations"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.migrations: List[Migration] = []
        self._migration_table = "schema_migrations"
        self._init_migrations()

    def _init_migrations(self) -> None:
        """Register built-in migrations"""
        self.add_migration(1, "Move legacy loans into loan lists", migrate_legacy_loans)
        self.add_migration(2, "Link null-loan collections to first loan", link_orphan_collections)
        self.add_migration(3, "Archive collections of deleted borrowers", archive_deleted_borrower_collections)

    def add_migration(self, version: int, name: str, apply: MigrationStep) -> None:
        """Add a migration to the manager"""
        if any(m.version == version for m in self.migrations):
            raise ValueError(f"Migration v{version:03d} already registered")
        self.migrations.append(Migration(version, name, apply))
        # Keep migrations sorted by version
        self.migrations.sort(key=lambda m: m.version)

    def get_current_version(self) -> int:
        """Highest applied version, 0 for a fresh store"""
        versions = [m["version"] for m in self.get_applied_migrations() if isinstance(m.get("version"), int)]
        return max(versions) if versions else 0

    def get_pending_migrations(self, target_version: Optional[int] = None) -> List[Migration]:
        current_version = self.get_current_version()
        max_version = target_version or max((m.version for m in self.migrations), default=0)
        return [m for m in self.migrations if current_version < m.version <= max_version]

    def get_applied_migrations(self) -> List[Dict[str, Any]]:
        return self.storage.load_all(self._migration_table)

    def migrate_up(self, target_version: Optional[int] = None) -> List[Migration]:
        """Apply pending migrations up to target version, each in its own unit of work"""
        pending = self.get_pending_migrations(target_version)
        applied = []

        if not pending:
            logger.info("No pending migrations to apply")
            return applied

        logger.info(f"Applying {len(pending)} pending migrations")

        for migration in pending:
            logger.info(f"Applying {migration}")
            try:
                with self.storage.atomic():
                    changed = migration.apply(self.storage)
                    self.storage.save(
                        self._migration_table,
                        f"v{migration.version:03d}",
                        {
                            "id": f"v{migration.version:03d}",
                            "version": migration.version,
                            "name": migration.name,
                            "applied_at": datetime.now(timezone.utc).isoformat(),
                            "checksum": migration.checksum,
                            "records_changed": changed
                        }
                    )
            except Exception as e:
                logger.error(f"Failed to apply {migration}: {e}")
                raise RuntimeError(f"Migration failed: {migration}") from e

            migration.applied_at = datetime.now(timezone.utc)
            applied.append(migration)
            logger.info(f"Applied {migration} ({changed} records changed)")

        return applied

    def validate_migrations(self) -> bool:
        """Check applied migrations against the registered definitions"""
        for record in self.get_applied_migrations():
            version = record["version"]
            migration = next((m for m in self.migrations if m.version == version), None)
            if not migration:
                logger.warning(f"Applied migration v{version} not found in definitions")
                continue
            if record.get("checksum") != migration.checksum:
                logger.error(f"Checksum mismatch for v{version}")
                return False
        return True

    def get_migration_status(self) -> Dict[str, Any]:
        pending = self.get_pending_migrations()
        return {
            "current_version": self.get_current_version(),
            "latest_version": max((m.version for m in self.migrations), default=0),
            "pending_count": len(pending),
            "applied_count": len(self.get_applied_migrations()),
            "pending_migrations": [
                {"version": m.version, "name": m.name} for m in pending
            ],
            "needs_migration": len(pending) > 0
        }
