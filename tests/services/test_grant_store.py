"""GrantService: last-writer-wins, soft revoke, lazy expiry, sweep."""
from datetime import timedelta

import pytest

from lawnet.core.errors import ValidationError
from lawnet.models.grant import Grant
from lawnet.services.grants.service import GrantService, normalize_key


class TestNormalizeKey:
    def test_lowercases_subject_and_feature(self):
        assert normalize_key(" Reader@Example.COM ", "Video", " abc ") == ("reader@example.com", "video", "abc")

    @pytest.mark.parametrize("key", [("", "video", "v1"), ("a@b.c", "", "v1"), ("a@b.c", "video", "  ")])
    def test_empty_part_rejected(self, key):
        with pytest.raises(ValidationError):
            normalize_key(*key)


class TestGrantService:
    def test_upsert_then_read(self, db, frozen_clock):
        svc = GrantService(db)
        svc.upsert_grant("Reader@example.com", "video", "v1", frozen_clock.now + timedelta(hours=1), "hi")
        db.commit()
        grant = svc.get_grant("reader@example.com", "VIDEO", "v1")
        assert grant is not None
        assert grant.message == "hi"

    def test_last_write_wins_without_merging(self, db, frozen_clock):
        svc = GrantService(db)
        svc.upsert_grant("a@b.c", "video", "v1", frozen_clock.now + timedelta(days=30))
        svc.upsert_grant("a@b.c", "video", "v1", frozen_clock.now + timedelta(seconds=10))
        db.commit()
        assert db.query(Grant).count() == 1
        record = svc.get_record("a@b.c", "video", "v1")
        assert record.expires_at.replace(tzinfo=None) == (frozen_clock.now + timedelta(seconds=10)).replace(tzinfo=None)

    def test_expiry_boundary(self, db, frozen_clock):
        svc = GrantService(db)
        expires = frozen_clock.now + timedelta(seconds=5)
        svc.upsert_grant("a@b.c", "pdf", "p1", expires)
        db.commit()

        frozen_clock.now = expires - timedelta(milliseconds=1)
        assert svc.get_grant("a@b.c", "pdf", "p1") is not None
        frozen_clock.now = expires
        assert svc.get_grant("a@b.c", "pdf", "p1") is None
        # lazy expiry does not delete
        assert svc.get_record("a@b.c", "pdf", "p1") is not None

    def test_revoke_is_idempotent(self, db, frozen_clock):
        svc = GrantService(db)
        svc.upsert_grant("a@b.c", "video", "v1", frozen_clock.now + timedelta(days=7))
        db.commit()

        svc.revoke_grant("a@b.c", "video", "v1")
        db.commit()
        first = svc.get_record("a@b.c", "video", "v1")
        revoked_at = first.revoked_at

        frozen_clock.advance(seconds=30)
        svc.revoke_grant("a@b.c", "video", "v1")
        svc.revoke_grant("nobody@b.c", "video", "v1")
        db.commit()

        again = svc.get_record("a@b.c", "video", "v1")
        assert again.revoked is True
        assert again.revoked_at == revoked_at
        assert svc.get_grant("a@b.c", "video", "v1") is None

    def test_upsert_clears_previous_revoke(self, db, frozen_clock):
        svc = GrantService(db)
        svc.upsert_grant("a@b.c", "video", "v1", frozen_clock.now + timedelta(days=7))
        svc.revoke_grant("a@b.c", "video", "v1")
        svc.upsert_grant("a@b.c", "video", "v1", frozen_clock.now + timedelta(hours=1))
        db.commit()
        grant = svc.get_grant("a@b.c", "video", "v1")
        assert grant is not None
        assert grant.revoked is False

    def test_sweep_removes_only_expired_rows(self, db, frozen_clock):
        svc = GrantService(db)
        svc.upsert_grant("a@b.c", "video", "gone", frozen_clock.now + timedelta(seconds=1))
        svc.upsert_grant("a@b.c", "video", "kept", frozen_clock.now + timedelta(days=1))
        db.commit()
        frozen_clock.advance(minutes=1)

        assert svc.sweep_expired(older_than_seconds=3600) == 0
        assert svc.sweep_expired() == 1
        db.commit()
        assert svc.get_record("a@b.c", "video", "gone") is None
        assert svc.get_record("a@b.c", "video", "kept") is not None
