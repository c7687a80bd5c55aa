"""
Integration tests for the Lending Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from fastapi.testclient import TestClient

from lending_ledger.config import LedgerConfig
from lending_ledger.system import LedgerSystem
from lending_ledger.api import create_app
from lending_ledger.api.auth import TEST_USER_ID, issue_token
from lending_ledger.collections import COLLECTIONS_TABLE
from lending_ledger.notifications import ChannelProvider, Notification, NotificationChannel


def _make_system(auth_enabled=False):
    config = LedgerConfig(
        storage_backend="memory",
        auth_enabled=auth_enabled,
        jwt_secret="test-secret",
        log_level="WARNING",
        log_format="text"
    )
    return LedgerSystem(config=config)


@pytest.fixture
def system():
    return _make_system()


@pytest.fixture
def client(system):
    """Test client with auth disabled (every request acts as the test user)"""
    with TestClient(create_app(system)) as client:
        yield client


def _create_borrower(client, name="Alice", principal="10000", interest="2", percent=True,
                     provided="2024-01-15"):
    r = client.post("/borrowers", json={
        "borrower_name": name,
        "principal_amount": principal,
        "interest_amount": interest,
        "interest_is_percent": percent,
        "date_provided": provided
    })
    assert r.status_code == 201, r.text
    return r.json()["data"]


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestBorrowerFlow:

    def test_create_and_list(self, client):
        borrower = _create_borrower(client)
        assert borrower["borrower_name"] == "Alice"
        assert borrower["total_loans"] == 1
        assert borrower["total_principal"] == "10000"
        assert "owner_id" not in borrower

        r = client.get("/borrowers")
        body = r.json()
        assert body["success"] is True
        assert body["count"] == 1
        assert body["data"][0]["next_due_date"] == "2024-02-15"

        r = client.get(f"/borrowers/{borrower['id']}/collections")
        collections = r.json()["data"]
        assert len(collections) == 12
        assert collections[0]["due_date"] == "2024-02-15"

    def test_create_validation_lists_fields(self, client):
        r = client.post("/borrowers", json={
            "borrower_name": " ",
            "principal_amount": "-5",
            "interest_amount": "1",
            "date_provided": "2024-01-01"
        })
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert set(body["errors"]) == {"borrower_name", "principal_amount"}

    def test_malformed_body(self, client):
        r = client.post("/borrowers", json={"borrower_name": "Alice", "principal_amount": "lots"})
        assert r.status_code == 400
        body = r.json()
        assert body["success"] is False
        assert "principal_amount" in body["errors"]
        assert "date_provided" in body["errors"]

    def test_check_duplicate(self, client):
        borrower = _create_borrower(client, name="John")

        r = client.get("/borrowers/check-duplicate", params={"borrower_name": "john"})
        body = r.json()
        assert body["is_duplicate"] is True
        assert body["borrower"]["id"] == borrower["id"]
        assert body["borrower"]["total_loans"] == 1

        r = client.get("/borrowers/check-duplicate", params={"borrower_name": "Jane"})
        assert r.json() == {"success": True, "is_duplicate": False}

        r = client.get("/borrowers/check-duplicate")
        assert r.status_code == 400

    def test_add_loan(self, client):
        borrower = _create_borrower(client)

        r = client.post(f"/borrowers/{borrower['id']}/loans", json={
            "principal_amount": "5000",
            "interest_amount": "250",
            "date_provided": "2024-03-10"
        })
        assert r.status_code == 201
        data = r.json()["data"]
        assert data["borrower"]["total_loans"] == 2
        assert data["borrower"]["total_principal"] == "15000"
        assert data["new_loan"]["status"] == "active"

        r = client.get(f"/borrowers/{borrower['id']}/collections")
        assert r.json()["count"] == 24

    def test_legacy_borrower_migrates_on_add_loan(self, client, system, make_legacy_borrower):
        borrower_id = make_legacy_borrower(system.storage, owner_id=TEST_USER_ID)

        r = client.get(f"/borrowers/{borrower_id}")
        assert r.json()["data"]["total_loans"] == 1
        assert r.json()["data"]["principal_amount"] == "10000"

        r = client.post(f"/borrowers/{borrower_id}/loans", json={
            "principal_amount": "1000",
            "interest_amount": "50",
            "date_provided": "2024-02-01"
        })
        borrower = r.json()["data"]["borrower"]
        assert len(borrower["loans"]) == 2
        assert borrower["principal_amount"] is None
        assert borrower["total_loans"] == 2

    def test_update_borrower(self, client):
        borrower = _create_borrower(client)

        r = client.put(f"/borrowers/{borrower['id']}", json={"borrower_name": "Alicia"})
        assert r.status_code == 200
        assert r.json()["data"]["borrower_name"] == "Alicia"

        r = client.put(f"/borrowers/{borrower['id']}", json={"principal_amount": "1"})
        assert r.status_code == 400
        assert r.json()["errors"] == ["principal_amount"]

        r = client.put(f"/borrowers/{borrower['id']}", json={})
        assert r.status_code == 400

    def test_update_loan_status(self, client):
        borrower = _create_borrower(client)
        loan_id = borrower["loans"][0]["id"]

        r = client.put(f"/borrowers/{borrower['id']}/loans/{loan_id}/status", json={"status": "written_off"})
        assert r.status_code == 200
        assert r.json()["data"]["status"] == "written_off"

        r = client.put(f"/borrowers/{borrower['id']}/loans/{loan_id}/status", json={"status": "gone"})
        assert r.status_code == 400

        r = client.put(f"/borrowers/{borrower['id']}/loans/missing/status", json={"status": "active"})
        assert r.status_code == 404

    def test_delete_borrower(self, client):
        borrower = _create_borrower(client)

        r = client.delete(f"/borrowers/{borrower['id']}")
        assert r.status_code == 200

        assert client.get(f"/borrowers/{borrower['id']}").status_code == 404
        assert client.get("/borrowers").json()["count"] == 0
        assert client.get("/collections").json()["count"] == 0

    def test_unknown_borrower(self, client):
        r = client.get("/borrowers/does-not-exist")
        assert r.status_code == 404
        assert r.json()["success"] is False


class TestCollectionFlow:

    def test_mark_collected_and_pending(self, client):
        borrower = _create_borrower(client)
        collections = client.get("/collections", params={"borrower_id": borrower["id"]}).json()["data"]
        collection_id = collections[0]["id"]
        assert collections[0]["borrower"]["borrower_name"] == "Alice"

        r = client.put(f"/collections/{collection_id}/mark-collected")
        assert r.status_code == 200
        data = r.json()["data"]
        assert data["status"] == "received"
        assert data["amount_collected"] == "200.00"
        assert data["collected_date"] is not None

        r = client.put(f"/collections/{collection_id}/mark-pending")
        data = r.json()["data"]
        assert data["status"] == "pending"
        assert data["amount_collected"] == "0"
        assert data["collected_date"] is None

    def test_mark_collected_with_body(self, client):
        borrower = _create_borrower(client)
        collection_id = client.get("/collections").json()["data"][0]["id"]

        r = client.put(f"/collections/{collection_id}/mark-collected", json={
            "collected_date": "2024-02-20",
            "amount_collected": "150.50",
            "notes": "paid late"
        })
        data = r.json()["data"]
        assert data["amount_collected"] == "150.50"
        assert data["collected_date"].startswith("2024-02-20T00:00:00")
        assert data["notes"] == "paid late"
        assert data["borrower"]["id"] == borrower["id"]

    def test_filters(self, client):
        _create_borrower(client, name="Alice", provided="2024-01-15")
        _create_borrower(client, name="Bob", provided="2024-01-20")

        r = client.get("/collections", params={"due_date": "2024-02-20"})
        data = r.json()["data"]
        assert [item["borrower"]["borrower_name"] for item in data] == ["Bob"]

        collection_id = data[0]["id"]
        client.put(f"/collections/{collection_id}/mark-collected")
        assert client.get("/collections", params={"status": "received"}).json()["count"] == 1
        assert client.get("/collections", params={"status": "pending"}).json()["count"] == 23

        assert client.get("/collections", params={"status": "lost"}).status_code == 400
        assert client.get("/collections", params={"due_date": "soon"}).status_code == 400

    def test_reserved_status_rejected(self, client, system):
        _create_borrower(client)
        collection = client.get("/collections").json()["data"][0]
        record = system.storage.load(COLLECTIONS_TABLE, collection["id"])
        record["status"] = "missed"
        system.storage.save(COLLECTIONS_TABLE, collection["id"], record)

        r = client.put(f"/collections/{collection['id']}/mark-collected")
        assert r.status_code == 400

    def test_dashboard_summary(self, client):
        provided = (date.today() - timedelta(days=400)).isoformat()
        _create_borrower(client, principal="5000", interest="100", percent=False, provided=provided)

        r = client.get("/collections/dashboard/summary")
        assert r.status_code == 200
        summary = r.json()["data"]
        assert summary["total_borrowers"] == 1
        assert summary["total_lent"] == "5000"
        assert summary["overdue_count"] == 12
        assert summary["due_today"] == 0
        assert summary["upcoming"] == []
        assert summary["overdue"][0]["borrower"]["borrower_name"] == "Alice"


class TestAdminWithAuthDisabled:

    def test_stats_and_users(self, client, system):
        system.user_directory.create_user("Ada", "ada@example.com")
        _create_borrower(client)

        r = client.get("/admin/stats")
        assert r.status_code == 200
        stats = r.json()["data"]
        assert stats["users"]["total"] == 1
        assert stats["collections"]["total"] == 12

        r = client.get("/admin/users")
        assert r.json()["count"] == 1


@pytest.fixture
def auth_system():
    return _make_system(auth_enabled=True)


@pytest.fixture
def auth_client(auth_system):
    with TestClient(create_app(auth_system)) as client:
        yield client


def _headers(system, user_id, expires_in_hours=None):
    token = issue_token(user_id, system.config, expires_in_hours)
    return {"Authorization": f"Bearer {token}"}


class TestAuthentication:

    def test_missing_token(self, auth_client):
        r = auth_client.get("/borrowers")
        assert r.status_code == 401
        assert r.json()["success"] is False

    def test_invalid_token(self, auth_client):
        r = auth_client.get("/borrowers", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401

    def test_token_scopes_data_to_owner(self, auth_client, auth_system):
        alice = auth_system.user_directory.create_user("Alice Owner", "alice@example.com")
        bob = auth_system.user_directory.create_user("Bob Owner", "bob@example.com")

        r = auth_client.post("/borrowers", headers=_headers(auth_system, alice.id), json={
            "borrower_name": "Carol",
            "principal_amount": "1000",
            "interest_amount": "10",
            "date_provided": "2024-01-01"
        })
        assert r.status_code == 201
        borrower_id = r.json()["data"]["id"]

        assert auth_client.get("/borrowers", headers=_headers(auth_system, alice.id)).json()["count"] == 1
        assert auth_client.get("/borrowers", headers=_headers(auth_system, bob.id)).json()["count"] == 0
        r = auth_client.get(f"/borrowers/{borrower_id}", headers=_headers(auth_system, bob.id))
        assert r.status_code == 404

    def test_deactivated_user_rejected(self, auth_client, auth_system):
        admin = auth_system.user_directory.create_user("Admin", "admin@example.com", role="admin")
        user = auth_system.user_directory.create_user("Ada", "ada@example.com")
        auth_system.user_directory.set_user_status(admin.id, user.id, False)

        r = auth_client.get("/borrowers", headers=_headers(auth_system, user.id))
        assert r.status_code == 403


class TestAdminEndpoints:

    def test_requires_admin_role(self, auth_client, auth_system):
        user = auth_system.user_directory.create_user("Ada", "ada@example.com")
        r = auth_client.get("/admin/users", headers=_headers(auth_system, user.id))
        assert r.status_code == 403

    def test_user_management(self, auth_client, auth_system):
        admin = auth_system.user_directory.create_user("Admin", "admin@example.com", role="admin")
        user = auth_system.user_directory.create_user("Ada", "ada@example.com")
        headers = _headers(auth_system, admin.id)

        r = auth_client.get("/admin/users", headers=headers)
        assert r.status_code == 200
        assert r.json()["count"] == 2

        r = auth_client.put(f"/admin/users/{user.id}/status", headers=headers, json={"is_active": False})
        assert r.status_code == 200
        assert r.json()["message"] == "User deactivated successfully"
        assert r.json()["data"]["is_active"] is False

        r = auth_client.put(f"/admin/users/{admin.id}/status", headers=headers, json={"is_active": False})
        assert r.status_code == 400
        assert r.json()["success"] is False

        r = auth_client.put("/admin/users/missing/status", headers=headers, json={"is_active": True})
        assert r.status_code == 404

        r = auth_client.get(f"/admin/users/{user.id}/activity", headers=headers)
        assert r.status_code == 200
        assert r.json()["data"]["user"]["id"] == user.id


class RecordingEmailProvider(ChannelProvider):
    """Captures reminder emails instead of talking to SMTP"""

    def __init__(self):
        self.sent = []

    async def send(self, notification: Notification) -> bool:
        self.sent.append(notification)
        return True


class TestTokenProvisioning:

    def test_admin_claims_reach_admin_surface(self, auth_client, auth_system):
        token = issue_token("admin-sub", auth_system.config, name="Root Admin",
                            email="Root@Example.com", role="admin")

        r = auth_client.get("/admin/stats", headers={"Authorization": f"Bearer {token}"})

        assert r.status_code == 200
        assert r.json()["data"]["users"]["admins"] == 1
        admin = auth_system.user_directory.get_user("admin-sub")
        assert admin.name == "Root Admin"
        assert admin.email == "root@example.com"
        assert admin.login_count == 1

    def test_unknown_role_claim_rejected(self, auth_client, auth_system):
        token = issue_token("someone", auth_system.config, role="superuser")
        r = auth_client.get("/borrowers", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert auth_system.user_directory.find_user("someone") is None

    def test_logins_counted_per_issued_token(self, auth_client, auth_system):
        now = datetime.now(timezone.utc)
        first = issue_token("ada", auth_system.config, email="ada@example.com",
                            issued_at=now - timedelta(hours=2))
        second = issue_token("ada", auth_system.config, issued_at=now - timedelta(hours=1))

        for _ in range(3):
            assert auth_client.get("/borrowers", headers={"Authorization": f"Bearer {first}"}).status_code == 200
        assert auth_system.user_directory.get_user("ada").login_count == 1

        auth_client.get("/borrowers", headers={"Authorization": f"Bearer {second}"})
        user = auth_system.user_directory.get_user("ada")
        assert user.login_count == 2
        assert user.email == "ada@example.com"
        assert user.is_online(datetime.now(timezone.utc), window_minutes=120)

    def test_reminders_reach_token_user(self, auth_client, auth_system):
        provider = RecordingEmailProvider()
        auth_system.notification_engine.register_provider(NotificationChannel.EMAIL, provider)
        user_headers = {"Authorization": "Bearer " + issue_token(
            "owner-sub", auth_system.config, name="Olive", email="olive@example.com")}
        admin_headers = {"Authorization": "Bearer " + issue_token(
            "admin-sub", auth_system.config, email="admin@example.com", role="admin")}

        r = auth_client.post("/borrowers", headers=user_headers, json={
            "borrower_name": "Carol",
            "principal_amount": "1000",
            "interest_amount": "10",
            "date_provided": "2024-01-15"
        })
        assert r.status_code == 201

        result = asyncio.run(auth_system.reminder_job.run(today=date(2025, 6, 1)))

        assert result.emails_sent == 1
        assert [n.recipient_address for n in provider.sent] == ["olive@example.com"]
        assert provider.sent[0].subject == "Overdue: Interest Collections"
        assert "Olive" in provider.sent[0].body

        r = auth_client.get("/admin/users/owner-sub/notifications", headers=admin_headers)
        assert r.status_code == 200
        history = r.json()["data"]
        assert r.json()["count"] == 1
        assert history[0]["status"] == "sent"
        assert history[0]["channel"] == "email"
        assert len(history[0]["metadata"]["collection_ids"]) == 12

        r = auth_client.get("/admin/users/owner-sub/notifications?status=failed", headers=admin_headers)
        assert r.json()["count"] == 0

        r = auth_client.get("/admin/notifications/stats", headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["data"]["total"] == 1
        assert r.json()["data"]["by_status"]["sent"] == 1
        assert r.json()["data"]["by_channel"]["email"] == 1


class TestNotificationAdminEndpoints:

    def test_invalid_status_filter(self, client, system):
        user = system.user_directory.create_user("Ada", "ada@example.com")

        r = client.get(f"/admin/users/{user.id}/notifications?status=bounced")
        assert r.status_code == 400
        assert r.json()["errors"] == ["status"]

        r = client.get(f"/admin/users/{user.id}/notifications?limit=0")
        assert r.status_code == 400

    def test_unknown_user(self, client):
        r = client.get("/admin/users/missing/notifications")
        assert r.status_code == 404

    def test_empty_stats(self, client):
        r = client.get("/admin/notifications/stats")
        assert r.status_code == 200
        assert r.json()["data"]["total"] == 0
        assert r.json()["data"]["by_status"]["failed"] == 0
