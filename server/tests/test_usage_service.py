from __future__ import annotations

from datetime import timedelta

from _pytest.monkeypatch import MonkeyPatch
import pytest

from mindhit.core.config import settings
from mindhit.core.errors import UsageLimitExceeded, ValidationFailure
from mindhit.db.models import User
from mindhit.db.session import SessionLocal
from mindhit.services import usage_service


def test_record_usage_skips_non_positive_tokens(user_id: str) -> None:
    with SessionLocal() as db:
        assert usage_service.record_usage(db, user_id=user_id, operation="mindmap", tokens=0) is None
        assert usage_service.record_usage(db, user_id=user_id, operation="mindmap", tokens=-5) is None
        db.commit()
        assert usage_service.check_limit(db, user_id).tokens_used == 0


def test_record_usage_rejects_unknown_operation(user_id: str) -> None:
    with SessionLocal() as db:
        with pytest.raises(ValidationFailure):
            _ = usage_service.record_usage(db, user_id=user_id, operation="translate", tokens=10)


def test_limit_is_enforced(user_id: str, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "usage_token_limit", 1000)
    with SessionLocal() as db:
        _ = usage_service.record_usage(db, user_id=user_id, operation="mindmap", tokens=600)
        db.commit()
        status = usage_service.ensure_can_use_ai(db, user_id)
        assert status.tokens_used == 600
        assert status.percent_used == pytest.approx(60.0)
        assert status.can_use_ai is True

        _ = usage_service.record_usage(db, user_id=user_id, operation="keywords", tokens=400)
        db.commit()
        with pytest.raises(UsageLimitExceeded) as exc_info:
            _ = usage_service.ensure_can_use_ai(db, user_id)
    assert exc_info.value.tokens_used == 1000
    assert exc_info.value.token_limit == 1000


def test_non_positive_limit_is_unlimited(user_id: str, monkeypatch: MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "usage_token_limit", 0)
    with SessionLocal() as db:
        _ = usage_service.record_usage(db, user_id=user_id, operation="mindmap", tokens=10_000_000)
        db.commit()
        status = usage_service.ensure_can_use_ai(db, user_id)
    assert status.is_unlimited is True
    assert status.can_use_ai is True
    assert status.token_limit == 0


def test_current_usage_breaks_down_by_operation(user_id: str) -> None:
    with SessionLocal() as db:
        for operation, tokens in (("mindmap", 300), ("mindmap", 200), ("keywords", 50)):
            _ = usage_service.record_usage(db, user_id=user_id, operation=operation, tokens=tokens)
        db.commit()
        summary = usage_service.current_usage(db, user_id)

    assert summary.by_operation == {"mindmap": 500, "keywords": 50}
    assert summary.tokens_used == 550
    assert summary.period_end - summary.period_start == timedelta(days=settings.usage_period_days)


def test_period_is_anchored_on_signup(make_user) -> None:
    uid = make_user()
    with SessionLocal() as db:
        user = db.get(User, uid)
        assert user is not None
        user.created_at = user.created_at - timedelta(days=45)
        db.commit()
        signup = user.created_at

        assert usage_service.period_start_for(db, uid) == signup + timedelta(days=30)
        assert usage_service.period_start_for(db, uid, at=signup + timedelta(days=1)) == signup
        assert usage_service.period_start_for(db, uid, at=signup - timedelta(days=1)) == signup
