"""HTTP surface: intake, admin review, access checks and revoke, auto mode, plans and audit."""
from unittest.mock import MagicMock, patch

import pytest
import redis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lawnet.api.deps import get_idempotency_store, get_proof_storage
from lawnet.core.config import settings
from lawnet.db.base import Base
from lawnet.db.session import get_db
from lawnet.main import app
from lawnet.services.live_updates.publisher import get_event_publisher
from lawnet.services.plan_tiers.service import PlanTierService
from lawnet.storage.local import LocalProofStorage

ADMIN = {"X-Owner-Key": settings.owner_key}


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def idempotency():
    store = MagicMock()
    store.check_and_set.return_value = True
    store.get.return_value = None
    return store


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def client(tmp_path, session_factory, publisher, idempotency):
    Session = session_factory

    def override_db():
        db = Session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_event_publisher] = lambda: publisher
    app.dependency_overrides[get_proof_storage] = lambda: LocalProofStorage(str(tmp_path))
    app.dependency_overrides[get_idempotency_store] = lambda: idempotency
    with patch("lawnet.services.auth.admin_key.is_locked_out", return_value=False), \
            patch("lawnet.services.auth.admin_key.record_failure"), \
            patch("lawnet.api.routes.submissions.check_submission_rate_limit", return_value=True):
        yield TestClient(app)
    app.dependency_overrides.clear()


def submit(client, **overrides):
    form = {
        "email": "Reader@Example.com",
        "name": "Asha",
        "phone": "9876543210",
        "feature": "playlist",
        "feature_id": "pl-1",
        "plan_key": "weekly",
        "proof_ref": "https://cdn.example.com/proof.png",
    }
    form.update(overrides)
    return client.post("/api/submissions", data=form)


def submit_with_key(client, key, **overrides):
    form = {
        "email": "reader@example.com",
        "feature": "playlist",
        "feature_id": "pl-7",
        "proof_ref": "https://cdn.example.com/proof.png",
    }
    form.update(overrides)
    return client.post("/api/submissions", data=form, headers={"Idempotency-Key": key})


def check(client, feature_id="pl-1"):
    return client.get(
        "/api/access/check",
        params={"email": "reader@example.com", "feature": "playlist", "feature_id": feature_id},
    )


class TestIntakeAndApproval:
    def test_manual_flow(self, client, publisher):
        resp = submit(client)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "pending"
        assert body["expires_at"] is None
        assert check(client).json()["reason"] == "NO_GRANT"

        approved = client.post(f"/api/submissions/{body['id']}/approve", json={"seconds": 3600}, headers=ADMIN)
        assert approved.status_code == 200
        assert approved.json()["subject"] == "reader@example.com"
        publisher.publish.assert_called_once()

        allowed = check(client).json()
        assert allowed["allowed"] is True
        assert 3590 <= allowed["seconds_left"] <= 3600
        assert allowed["message"].startswith("🎉 Congratulations Asha")

        assert client.post(f"/api/submissions/{body['id']}/revoke", headers=ADMIN).json() == {"ok": True}
        revoked = check(client).json()
        assert revoked["allowed"] is False
        assert revoked["reason"] == "REVOKED"

    def test_screenshot_upload(self, client, tmp_path):
        resp = client.post(
            "/api/submissions",
            data={"gmail": "reader@example.com", "feature": "video", "feature_id": "v1", "plan_key": "monthly"},
            files={"screenshot": ("pay.png", b"\x89PNG fake", "image/png")},
        )
        assert resp.status_code == 200
        mine = client.get("/api/submissions/my", params={"email": "reader@example.com"}).json()
        assert mine["found"] is True
        assert mine["item"]["proof_ref"].startswith("/uploads/submissions/")
        assert len(list(tmp_path.iterdir())) == 1

    def test_bad_upload_rejected(self, client):
        resp = client.post(
            "/api/submissions",
            data={"email": "reader@example.com", "feature": "video", "feature_id": "v1"},
            files={"screenshot": ("pay.exe", b"MZ", "application/octet-stream")},
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_missing_proof(self, client):
        resp = submit(client, proof_ref="")
        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "payment proof required", "code": "validation_error"}

    def test_rate_limited(self, client):
        with patch("lawnet.api.routes.submissions.check_submission_rate_limit", return_value=False):
            assert submit(client).status_code == 429

    def test_idempotent_replay(self, client, idempotency):
        first = submit(client, feature_id="pl-9").json()
        idempotency.check_and_set.return_value = False
        idempotency.get.return_value = first["id"]
        again = client.post(
            "/api/submissions",
            data={"email": "reader@example.com", "feature": "playlist", "feature_id": "pl-9", "proof_ref": "x"},
            headers={"Idempotency-Key": "abc"},
        )
        assert again.json()["id"] == first["id"]
        idempotency.release.assert_not_called()

    def test_idempotency_key_claimed_then_remembered(self, client, idempotency):
        resp = submit_with_key(client, "k-1")
        assert resp.status_code == 200
        idempotency.check_and_set.assert_called_once_with("k-1", "pending")
        idempotency.remember.assert_called_once_with("k-1", resp.json()["id"])

    def test_same_key_in_flight_conflicts(self, client, idempotency):
        idempotency.check_and_set.return_value = False
        idempotency.get.return_value = "pending"
        resp = submit_with_key(client, "k-2")
        assert resp.status_code == 409
        assert resp.json()["code"] == "duplicate_request"
        assert client.get("/api/submissions/my", params={"email": "reader@example.com"}).json()["found"] is False

    def test_failed_intake_releases_key(self, client, idempotency):
        resp = submit_with_key(client, "k-3", proof_ref="")
        assert resp.status_code == 400
        idempotency.release.assert_called_once_with("k-3")
        idempotency.remember.assert_not_called()

    def test_redis_down_still_accepts(self, client, idempotency):
        idempotency.check_and_set.side_effect = redis.ConnectionError("down")
        assert submit_with_key(client, "k-4").status_code == 200
        idempotency.release.assert_not_called()

    def test_approve_requires_seconds(self, client):
        sub_id = submit(client).json()["id"]
        resp = client.post(f"/api/submissions/{sub_id}/approve", json={}, headers=ADMIN)
        assert resp.status_code == 400
        assert resp.json()["error"] == "seconds required"

    def test_reject_then_approve_conflicts(self, client):
        sub_id = submit(client).json()["id"]
        rejected = client.post(f"/api/submissions/{sub_id}/reject", json={"note": "unreadable"}, headers=ADMIN)
        assert rejected.json()["status"] == "rejected"
        resp = client.post(f"/api/submissions/{sub_id}/approve", json={"seconds": 60}, headers=ADMIN)
        assert resp.status_code == 409

    def test_unknown_submission(self, client):
        resp = client.post("/api/submissions/nope/approve", json={"seconds": 60}, headers=ADMIN)
        assert resp.status_code == 404


class TestAdmin:
    @pytest.mark.parametrize("method,path", [
        ("get", "/api/submissions"),
        ("get", "/api/submissions/auto-mode"),
        ("post", "/api/submissions/x/revoke"),
        ("get", "/api/audit"),
        ("get", "/api/plans/all"),
    ])
    def test_requires_owner_key(self, client, method, path):
        resp = getattr(client, method)(path, headers={"X-Owner-Key": "wrong"})
        assert resp.status_code == 403
        assert resp.json()["code"] == "forbidden"

    def test_bearer_accepted(self, client):
        resp = client.get("/api/submissions", headers={"Authorization": f"Bearer {settings.owner_key}"})
        assert resp.status_code == 200
        assert resp.json()["total"] == 0

    def test_auto_mode_grants_on_intake(self, client, publisher):
        assert client.get("/api/submissions/auto-mode", headers=ADMIN).json()["auto"] is False
        assert client.post("/api/submissions/auto-mode", json={"auto": True}, headers=ADMIN).json()["auto"] is True

        body = submit(client, plan_key="monthly").json()
        assert body["status"] == "approved"
        assert body["expiry"] is not None
        assert check(client).json()["allowed"] is True
        publisher.publish.assert_called_once()

        audit = client.get("/api/audit", params={"action": "auto_mode_changed"}, headers=ADMIN).json()
        assert audit["total"] == 1

    def test_direct_grant_and_revoke_by_key(self, client, publisher):
        resp = client.post(
            "/api/access/grant",
            json={"email": "reader@example.com", "feature": "playlist", "feature_id": "pl-2", "seconds": 120},
            headers=ADMIN,
        )
        assert resp.status_code == 200
        assert check(client, "pl-2").json()["allowed"] is True

        revoked = client.post(
            "/api/access/revoke",
            json={"email": "reader@example.com", "feature": "playlist", "feature_id": "pl-2"},
            headers=ADMIN,
        )
        assert revoked.json() == {"ok": True, "submissions_revoked": 1}
        assert check(client, "pl-2").json()["reason"] == "REVOKED"
        assert [c.args[0].type for c in publisher.publish.call_args_list] == ["grant", "revoke"]

    def test_list_and_delete(self, client):
        sub_id = submit(client).json()["id"]
        listed = client.get("/api/submissions", params={"status": "pending"}, headers=ADMIN).json()
        assert [item["id"] for item in listed["items"]] == [sub_id]
        assert client.delete(f"/api/submissions/{sub_id}", headers=ADMIN).json() == {"ok": True, "removed": sub_id}
        assert client.get("/api/submissions", headers=ADMIN).json()["total"] == 0


class TestPlansAndHealth:
    def test_plans_update(self, client, session_factory):
        assert client.get("/api/plans").json() == []
        db = session_factory()
        PlanTierService(db).seed_default_tiers()
        db.commit()
        db.close()

        resp = client.put("/api/plans", json=[{"key": "weekly", "price": 250, "enabled": False}], headers=ADMIN)
        assert resp.status_code == 200
        assert [p["key"] for p in client.get("/api/plans").json()] == ["monthly", "yearly"]

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "ok"
        assert "stream_connections" in body

    def test_check_requires_params(self, client):
        resp = client.get("/api/access/check", params={"email": "", "feature": "video", "feature_id": "v1"})
        assert resp.status_code == 400
