"""
User Directory Module

Accounts that own borrowers, plus the admin-facing activity statistics.
Passwords and sign-in live with whoever issues the bearer tokens. Accounts
are provisioned here from verified token claims, and each newly issued token
is recorded as a login.
"""

from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .loans import Borrower
from .collections import CollectionStatus, InterestCollection, visible, COLLECTIONS_TABLE, BORROWERS_TABLE
from .errors import NotFoundError, ValidationFailure, SelfDeactivationBlocked
from .logging_config import get_logger, log_action


class UserRole(Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass
class User(StorageRecord):
    """Ledger account"""
    name: str
    email: str
    role: UserRole = UserRole.USER
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    login_count: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def is_online(self, now: datetime, window_minutes: int = 30) -> bool:
        """Logged in within the last window_minutes"""
        if self.last_login_at is None:
            return False
        return self.last_login_at > now - timedelta(minutes=window_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'created_at': self.created_at.isoformat(),
            'updated_at': self.updated_at.isoformat(),
            'name': self.name,
            'email': self.email,
            'role': self.role.value,
            'is_active': self.is_active,
            'last_login_at': self.last_login_at.isoformat() if self.last_login_at else None,
            'login_count': self.login_count
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            email=data['email'],
            role=UserRole(data.get('role', UserRole.USER.value)),
            is_active=bool(data.get('is_active', True)),
            last_login_at=datetime.fromisoformat(data['last_login_at']) if data.get('last_login_at') else None,
            login_count=int(data.get('login_count', 0))
        )


class UserDirectory:
    """Stores users and reports on their activity"""

    def __init__(self, storage: StorageInterface, online_window_minutes: int = 30):
        self.storage = storage
        self.online_window_minutes = online_window_minutes
        self.users_table = "users"
        self.borrowers_table = BORROWERS_TABLE
        self.collections_table = COLLECTIONS_TABLE
        self.logger = get_logger("lending_ledger.users")

    def create_user(self, name: str, email: str, role: Any = UserRole.USER) -> User:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        errors = []
        if not name:
            errors.append('name')
        if '@' not in email:
            errors.append('email')
        if errors:
            raise ValidationFailure("Name and a valid email are required", errors)
        role = self._parse_role(role)
        if self.get_user_by_email(email):
            raise ValidationFailure(f"User with email {email} already exists", ['email'])

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            email=email,
            role=role
        )
        self._save_user(user)

        log_action(
            self.logger, "info", "User created",
            user_id=user.id, action="user_created", resource=f"user:{user.id}",
            extra={"role": role.value}
        )
        return user

    def get_user(self, user_id: str) -> User:
        data = self.storage.load(self.users_table, user_id)
        if not data:
            raise NotFoundError(f"User {user_id} not found")
        return User.from_dict(data)

    def find_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.users_table, user_id)
        return User.from_dict(data) if data else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        users = self.storage.find(self.users_table, {'email': email.strip().lower()})
        return User.from_dict(users[0]) if users else None

    def record_login(self, user_id: str, when: Optional[datetime] = None) -> User:
        """Update the activity counters after a successful sign-in"""
        user = self.get_user(user_id)
        user.last_login_at = when or datetime.now(timezone.utc)
        user.login_count += 1
        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)
        return user

    def provision_from_token(
        self,
        user_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[str] = None,
        issued_at: Optional[datetime] = None
    ) -> User:
        """
        Ensure the holder of a verified bearer token has a user record.

        Unknown subjects are created from the token claims. Known users get
        their name, email and role synced when the token carries them. Each
        newly issued token counts as one login: a token whose issue time is
        later than the last recorded login bumps the activity counters, so
        repeated requests with the same token do not. Deactivated users are
        returned untouched.
        """
        user = self.find_user(user_id)
        now = datetime.now(timezone.utc)
        name = (name or "").strip()
        email = (email or "").strip().lower()

        if user is None:
            user = User(
                id=user_id,
                created_at=now,
                updated_at=now,
                name=name or user_id,
                email=email,
                role=self._parse_role(role) if role else UserRole.USER
            )
            self._save_user(user)
            log_action(
                self.logger, "info", "User provisioned from token",
                user_id=user.id, action="user_provisioned", resource=f"user:{user.id}",
                extra={"role": user.role.value}
            )
        elif not user.is_active:
            return user
        else:
            changed = False
            if name and name != user.name:
                user.name = name
                changed = True
            if email and email != user.email:
                user.email = email
                changed = True
            if role and self._parse_role(role) != user.role:
                user.role = self._parse_role(role)
                changed = True
            if changed:
                user.updated_at = now
                self._save_user(user)

        if issued_at is not None and (user.last_login_at is None or issued_at > user.last_login_at):
            user = self.record_login(user.id, when=issued_at)
        return user

    def list_users_with_stats(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Every user with borrower and collection counts, most recent login first"""
        now = now or datetime.now(timezone.utc)
        records = self.storage.find(self.users_table, {}, sort_by='last_login_at', descending=True)

        results = []
        for record in records:
            user = User.from_dict(record)
            item = user.to_dict()
            item['stats'] = {
                'borrower_count': self.storage.count(
                    self.borrowers_table, {'owner_id': user.id, 'deleted': False}
                ),
                'collection_count': self.storage.count(
                    self.collections_table, visible({'owner_id': user.id})
                ),
                'pending_collections': self.storage.count(
                    self.collections_table,
                    visible({'owner_id': user.id, 'status': CollectionStatus.PENDING.value})
                )
            }
            item['is_online'] = user.is_online(now, self.online_window_minutes)
            results.append(item)
        return results

    def system_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """System-wide totals for the admin dashboard"""
        now = now or datetime.now(timezone.utc)
        one_day_ago = (now - timedelta(hours=24)).isoformat()

        received = visible({'status': CollectionStatus.RECEIVED.value})
        return {
            'users': {
                'total': self.storage.count(self.users_table),
                'active': self.storage.count(self.users_table, {'is_active': True}),
                'admins': self.storage.count(self.users_table, {'role': UserRole.ADMIN.value}),
                'recent_logins': self.storage.count(self.users_table, {'last_login_at': {'$gte': one_day_ago}})
            },
            'borrowers': {
                'total': self.storage.count(self.borrowers_table, {'deleted': False})
            },
            'collections': {
                'total': self.storage.count(self.collections_table, visible({})),
                'pending': self.storage.count(
                    self.collections_table, visible({'status': CollectionStatus.PENDING.value})
                ),
                'received': self.storage.count(self.collections_table, received),
                'total_amount_collected': str(
                    self.storage.sum_field(self.collections_table, 'amount_collected', received)
                )
            }
        }

    def set_user_status(self, acting_user_id: str, user_id: str, is_active: bool) -> User:
        """Activate or deactivate an account; nobody may deactivate themselves"""
        user = self.get_user(user_id)
        if user.id == acting_user_id and not is_active:
            raise SelfDeactivationBlocked("You cannot deactivate your own account")

        user.is_active = bool(is_active)
        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)

        log_action(
            self.logger, "info", f"User {'activated' if user.is_active else 'deactivated'}",
            user_id=acting_user_id, action="user_status_changed", resource=f"user:{user.id}",
            extra={"is_active": user.is_active}
        )
        return user

    def user_activity(self, user_id: str) -> Dict[str, Any]:
        """The user's five newest borrowers and ten most recently touched collections"""
        user = self.get_user(user_id)

        borrowers = self.storage.find(
            self.borrowers_table, {'owner_id': user_id, 'deleted': False},
            sort_by='created_at', descending=True, limit=5
        )
        recent_borrowers = [
            {'id': b['id'], 'borrower_name': b['borrower_name'], 'created_at': b['created_at']}
            for b in borrowers
        ]

        collections = self.storage.find(
            self.collections_table, visible({'owner_id': user_id}),
            sort_by='updated_at', descending=True, limit=10
        )
        names: Dict[str, Optional[str]] = {}
        recent_collections = []
        for record in collections:
            collection = InterestCollection.from_dict(record)
            if collection.borrower_id not in names:
                data = self.storage.load(self.borrowers_table, collection.borrower_id)
                names[collection.borrower_id] = Borrower.from_dict(data).borrower_name if data else None
            recent_collections.append({
                'id': collection.id,
                'borrower_id': collection.borrower_id,
                'borrower_name': names[collection.borrower_id],
                'status': collection.status.value,
                'amount_collected': str(collection.amount_collected),
                'collected_date': collection.collected_date.isoformat() if collection.collected_date else None,
                'due_date': collection.due_date.isoformat(),
                'updated_at': collection.updated_at.isoformat()
            })

        return {
            'user': user.to_dict(),
            'recent_borrowers': recent_borrowers,
            'recent_collections': recent_collections
        }

    @staticmethod
    def _parse_role(role: Any) -> UserRole:
        try:
            return role if isinstance(role, UserRole) else UserRole(role)
        except ValueError:
            raise ValidationFailure(f"Invalid role: {role}", ['role'])

    def _save_user(self, user: User) -> None:
        self.storage.save(self.users_table, user.id, user.to_dict())
