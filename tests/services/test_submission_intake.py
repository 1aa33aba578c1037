from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from lawnet.core.errors import NotFoundError, RateLimitedError, ValidationError
from lawnet.models.audit_log import AuditLog
from lawnet.services.app_settings.settings_service import ApprovalPolicy, AppSettingsService
from lawnet.services.approvals.service import ApprovalService
from lawnet.services.grants.service import GrantService
from lawnet.services.submissions.service import ContactInfo, SubmissionService
from lawnet.utils import clock


def create(svc, **kwargs):
    data = dict(
        subject="Reader@Example.com",
        feature="Video",
        feature_id="v1",
        plan_key="weekly",
        proof_ref="/uploads/submissions/p.png",
    )
    data.update(kwargs)
    return svc.create_submission(**data)


class TestCreateSubmission:
    def test_manual_mode_stays_pending(self, db):
        svc = SubmissionService(db, policy=ApprovalPolicy(auto_approve=False))
        sub = create(svc, contact=ContactInfo(name=" Asha ", phone="98765"), plan_price="400")
        assert sub.status == "pending"
        assert sub.subject == "reader@example.com"
        assert sub.feature == "video"
        assert sub.name == "Asha"
        assert sub.expires_at is None
        assert GrantService(db).get_grant("reader@example.com", "video", "v1") is None
        assert db.query(AuditLog).filter(AuditLog.action == "submission_created").count() == 1

    def test_auto_mode_monthly(self, db, frozen_clock):
        publisher = MagicMock()
        svc = SubmissionService(
            db,
            policy=ApprovalPolicy(auto_approve=True),
            approvals=ApprovalService(db, publisher=publisher),
        )
        sub = create(svc, plan_key="30d")
        assert sub.plan_key == "monthly"
        assert sub.status == "approved"
        assert clock.as_utc(sub.expires_at) == frozen_clock.now + timedelta(days=30)
        assert GrantService(db).get_grant("reader@example.com", "video", "v1") is not None
        publisher.publish.assert_called_once()

    def test_auto_mode_unknown_plan_uses_policy_default(self, db, frozen_clock):
        svc = SubmissionService(
            db,
            policy=ApprovalPolicy(auto_approve=True, default_grant_seconds=120),
            approvals=ApprovalService(db, publisher=MagicMock()),
        )
        sub = create(svc, plan_key="", feature_id="v2")
        assert sub.status == "approved"
        grant = GrantService(db).get_grant("reader@example.com", "video", "v2")
        assert clock.as_utc(grant.expires_at) == frozen_clock.now + timedelta(seconds=120)

    @pytest.mark.parametrize("field,value", [
        ("subject", "  "),
        ("proof_ref", ""),
        ("feature", ""),
        ("feature_id", " "),
        ("plan_price", "abc"),
    ])
    def test_validation(self, db, field, value):
        svc = SubmissionService(db)
        with pytest.raises(ValidationError):
            create(svc, **{field: value})

    def test_rate_limited(self, db):
        limiter = MagicMock(return_value=False)
        svc = SubmissionService(db, rate_limiter=limiter)
        with pytest.raises(RateLimitedError):
            create(svc)
        limiter.assert_called_once_with("reader@example.com")


class TestQueries:
    def test_latest_for_and_list(self, db):
        svc = SubmissionService(db)
        first = create(svc, feature_id="v1")
        second = create(svc, feature_id="v2")
        assert svc.latest_for("reader@example.com", "video", "v1").id == first.id
        assert svc.latest_for("nobody@example.com") is None

        rows, total = svc.list_submissions(status="pending", page=1, page_size=1)
        assert total == 2
        assert len(rows) == 1
        rows, total = svc.list_submissions(feature_id="v2")
        assert [r.id for r in rows] == [second.id]

    def test_unknown_status_filter(self, db):
        with pytest.raises(ValidationError):
            SubmissionService(db).list_submissions(status="archived")

    def test_delete_removes_row_and_proof(self, db):
        storage = MagicMock()
        svc = SubmissionService(db, storage=storage)
        sub = create(svc)
        sub_id = sub.id
        svc.delete_submission(sub_id)
        storage.delete_proof.assert_called_once_with("/uploads/submissions/p.png")
        with pytest.raises(NotFoundError):
            svc.get(sub_id)


class TestAppSettings:
    def test_toggle_auto_approve(self, db):
        svc = AppSettingsService(db)
        assert svc.policy().auto_approve is False
        assert svc.set_auto_approve(True)["auto"] is True
        db.commit()
        assert svc.policy().auto_approve is True
