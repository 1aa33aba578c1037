"""ApprovalService: state machine, unit-of-work rollback, publish after commit."""
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from lawnet.core.errors import InvalidTransitionError, NotFoundError, TransientStoreError, ValidationError
from lawnet.models.audit_log import AuditLog
from lawnet.models.submission import Submission
from lawnet.services.approvals.service import ApprovalService, default_grant_message
from lawnet.services.grants.service import GrantService
from lawnet.utils import clock


def make_submission(db, **kwargs):
    data = dict(
        subject="reader@example.com",
        name="Asha",
        feature="playlist",
        feature_id="pl-1",
        plan_key="weekly",
        proof_ref="/uploads/submissions/x.png",
    )
    data.update(kwargs)
    sub = Submission(**data)
    db.add(sub)
    db.commit()
    return sub


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def approvals(db, publisher):
    return ApprovalService(db, publisher=publisher)


class TestApprove:
    def test_weekly_pending_approved_for_one_hour_then_revoked(self, db, approvals, publisher, frozen_clock):
        sub = make_submission(db)
        grants = GrantService(db)
        assert grants.get_grant("reader@example.com", "playlist", "pl-1") is None

        grant = approvals.approve(sub.id, 3600)
        assert clock.as_utc(grant.expires_at) == frozen_clock.now + timedelta(hours=1)
        assert grant.message == default_grant_message("Asha")
        assert grants.get_grant("reader@example.com", "playlist", "pl-1") is not None

        db.refresh(sub)
        assert sub.status == "approved"

        approvals.revoke(sub.id)
        assert grants.get_grant("reader@example.com", "playlist", "pl-1") is None
        db.refresh(sub)
        assert sub.status == "revoked"

        kinds = [c.args[0].type for c in publisher.publish.call_args_list]
        assert kinds == ["grant", "revoke"]

    def test_reapprove_overwrites_expiry(self, db, approvals, frozen_clock):
        sub = make_submission(db)
        approvals.approve(sub.id, 60)
        approvals.approve(sub.id, 10)
        grant = GrantService(db).get_grant("reader@example.com", "playlist", "pl-1")
        assert clock.as_utc(grant.expires_at) == frozen_clock.now + timedelta(seconds=10)

    def test_second_submission_for_same_key_overwrites_grant(self, db, approvals, publisher, frozen_clock):
        first = make_submission(db)
        second = make_submission(db, plan_key="monthly")
        approvals.approve(first.id, 60)
        approvals.approve(second.id, 10)

        grant = GrantService(db).get_grant("reader@example.com", "playlist", "pl-1")
        assert clock.as_utc(grant.expires_at) == frozen_clock.now + timedelta(seconds=10)
        assert grant.submission_id == second.id
        db.refresh(first)
        db.refresh(second)
        assert (first.status, second.status) == ("approved", "approved")
        assert publisher.publish.call_count == 2

    def test_custom_message_kept(self, db, approvals, publisher, frozen_clock):
        sub = make_submission(db)
        approvals.approve(sub.id, 60, "Enjoy the course")
        event = publisher.publish.call_args.args[0]
        assert event.message == "Enjoy the course"
        assert event.subject == "reader@example.com"
        assert event.expires_at == frozen_clock.now + timedelta(seconds=60)

    @pytest.mark.parametrize("seconds", [0, -5, "abc"])
    def test_invalid_duration(self, db, approvals, seconds):
        sub = make_submission(db)
        with pytest.raises(ValidationError):
            approvals.approve(sub.id, seconds)

    def test_unknown_submission(self, approvals):
        with pytest.raises(NotFoundError):
            approvals.approve("missing", 60)

    @pytest.mark.parametrize("status", ["rejected", "revoked"])
    def test_cannot_approve_closed_submission(self, db, approvals, publisher, status):
        sub = make_submission(db, status=status)
        with pytest.raises(InvalidTransitionError):
            approvals.approve(sub.id, 60)
        publisher.publish.assert_not_called()

    def test_audit_row_written(self, db, approvals, frozen_clock):
        sub = make_submission(db)
        approvals.approve(sub.id, 60, actor="owner")
        row = db.query(AuditLog).filter(AuditLog.action == "submission_approved").one()
        assert row.entity_id == sub.id
        assert row.payload["from"] == "pending"


class TestAtomicity:
    @patch("lawnet.services.approvals.service.time.sleep")
    def test_failed_unit_rolls_back_and_publishes_nothing(self, sleep, db, approvals, publisher, frozen_clock):
        sub = make_submission(db)
        with patch.object(GrantService, "upsert_grant", side_effect=TransientStoreError("db down")):
            with pytest.raises(TransientStoreError):
                approvals.approve(sub.id, 60)
        db.refresh(sub)
        assert sub.status == "pending"
        assert sub.expires_at is None
        assert db.query(AuditLog).filter(AuditLog.action == "submission_approved").count() == 0
        publisher.publish.assert_not_called()
        assert sleep.call_count == 2

    @patch("lawnet.services.approvals.service.time.sleep")
    def test_transient_failure_retried(self, sleep, db, approvals, publisher, frozen_clock):
        sub = make_submission(db)
        real = GrantService.upsert_grant
        calls = {"n": 0}

        def flaky(self, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise TransientStoreError("deadlock")
            return real(self, *args, **kwargs)

        with patch.object(GrantService, "upsert_grant", flaky):
            approvals.approve(sub.id, 60)
        assert calls["n"] == 2
        assert publisher.publish.call_count == 1
        sleep.assert_called_once()

    def test_publish_happens_after_commit(self, db, frozen_clock):
        sub = make_submission(db)
        order = []
        publisher = MagicMock()
        publisher.publish.side_effect = lambda event: order.append("publish")
        approvals = ApprovalService(db, publisher=publisher)
        real_commit = db.commit

        def commit():
            order.append("commit")
            real_commit()

        with patch.object(db, "commit", commit):
            approvals.approve(sub.id, 60)
        assert order == ["commit", "publish"]


class TestRevokeAndReject:
    def test_revoke_pending_is_noop(self, db, approvals, publisher):
        sub = make_submission(db)
        approvals.revoke(sub.id)
        db.refresh(sub)
        assert sub.status == "pending"
        publisher.publish.assert_not_called()

    def test_reject_pending(self, db, approvals):
        sub = make_submission(db)
        result = approvals.reject(sub.id, "blurry screenshot")
        assert result.status == "rejected"
        assert result.admin_note == "blurry screenshot"

    def test_reject_approved_not_allowed(self, db, approvals, frozen_clock):
        sub = make_submission(db)
        approvals.approve(sub.id, 60)
        with pytest.raises(InvalidTransitionError):
            approvals.reject(sub.id)

    def test_revoke_key_marks_submissions_and_notifies(self, db, approvals, publisher, frozen_clock):
        sub = make_submission(db)
        approvals.approve(sub.id, 3600)
        publisher.reset_mock()

        assert approvals.revoke_key("Reader@Example.com", "playlist", "pl-1") == 1
        db.refresh(sub)
        assert sub.status == "revoked"
        assert publisher.publish.call_args.args[0].type == "revoke"

        # no grant left: still succeeds and still notifies
        publisher.reset_mock()
        assert approvals.revoke_key("reader@example.com", "playlist", "pl-1") == 0
        publisher.publish.assert_called_once()


class TestDirectAndAuto:
    def test_grant_direct_records_admin_submission(self, db, approvals, publisher, frozen_clock):
        grant = approvals.grant_direct("Reader@example.com", "video", "v9", 120, "Gift")
        assert clock.as_utc(grant.expires_at) == frozen_clock.now + timedelta(seconds=120)
        sub = db.query(Submission).filter(Submission.feature_id == "v9").one()
        assert sub.status == "approved"
        assert sub.context == {"source": "admin"}
        assert publisher.publish.call_args.args[0].message == "Gift"

    def test_auto_approve_uses_plan_tier_duration(self, db, approvals, frozen_clock):
        sub = make_submission(db, plan_key="monthly")
        grant = approvals.auto_approve(sub)
        assert clock.as_utc(grant.expires_at) == frozen_clock.now + timedelta(days=30)
        row = db.query(AuditLog).filter(AuditLog.action == "submission_approved").one()
        assert row.actor_type == "auto"
