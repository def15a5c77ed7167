"""Tests for the user bootstrap service."""

from refyn.db.models import User
from refyn.services.bootstrap import ensure_user
from tests.factories import create_test_user
from tests.helpers import create_test_user_id


class TestEnsureUser:
    def test_creates_user(self, db_session):
        user_id = create_test_user_id()

        user = ensure_user(db_session, user_id, "painter@example.com")

        assert user.id == user_id
        assert user.email == "painter@example.com"
        assert user.subscription_plan == "free"
        assert user.conversations_this_month == 0

    def test_idempotent(self, db_session):
        user_id = create_test_user_id()

        first = ensure_user(db_session, user_id)
        second = ensure_user(db_session, user_id)

        assert first.id == second.id
        assert db_session.query(User).filter(User.id == user_id).count() == 1

    def test_updates_changed_email(self, db_session):
        user_id = create_test_user_id()
        ensure_user(db_session, user_id, "old@example.com")

        user = ensure_user(db_session, user_id, "student@uni.edu")

        assert user.email == "student@uni.edu"

    def test_missing_email_keeps_stored_email(self, db_session):
        user_id = create_test_user_id()
        ensure_user(db_session, user_id, "kept@example.com")

        user = ensure_user(db_session, user_id, None)

        assert user.email == "kept@example.com"

    def test_email_held_by_another_user_on_create(self, db_session):
        create_test_user(db_session, email="taken@example.com")
        user_id = create_test_user_id()

        user = ensure_user(db_session, user_id, "taken@example.com")

        assert user.id == user_id
        assert user.email is None

    def test_email_held_by_another_user_on_update(self, db_session):
        create_test_user(db_session, email="taken@example.com")
        user_id = create_test_user_id()
        ensure_user(db_session, user_id, "mine@example.com")

        user = ensure_user(db_session, user_id, "taken@example.com")

        assert user.email == "mine@example.com"
