"""Unit tests for AccountService against an in-memory SQLite database."""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from menoguide.core.account_service import (
    DEFAULT_AVATAR_URL,
    AccountService,
    SignupError,
    hash_password,
    verify_password,
)
from menoguide.core.signup_state import MenopausePhase
from menoguide.storage.database import create_session_factory
from menoguide.storage.models import User, UserProfile
from menoguide.storage.repository import UserRepository

from conftest import make_valid_draft


@pytest.fixture
def session_factory(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    return create_session_factory("sqlite://", create_tables=True)


@pytest.fixture
def service(session_factory):
    return AccountService(session_factory)


def _count(session_factory, model) -> int:
    db = session_factory()
    try:
        return db.query(model).count()
    finally:
        db.close()


# ── Passwords ────────────────────────────────────────────────────────────


class TestPasswordHashing:

    def test_hash_verifies(self):
        encoded = hash_password("Str0ng!Pass")

        assert encoded.startswith("pbkdf2_sha256$")
        assert verify_password("Str0ng!Pass", encoded) is True
        assert verify_password("wrong", encoded) is False

    def test_hash_is_salted(self):
        assert hash_password("same") != hash_password("same")

    def test_malformed_hash_never_verifies(self):
        assert verify_password("x", "not-a-hash") is False
        assert verify_password("x", "md5$1$00$00") is False


# ── Signup ───────────────────────────────────────────────────────────────


class TestCompleteSignup:

    def test_creates_account_and_profile(self, service, session_factory):
        draft = make_valid_draft(MenopausePhase.PRE_MENOPAUSE)

        result = asyncio.run(service.complete_signup(draft))

        assert result.user_id.startswith("user_")
        assert result.profile_image_url is None

        db = session_factory()
        try:
            repo = UserRepository(db)
            user = repo.get_user(result.user_id)
            profile = repo.get_profile(result.user_id)
        finally:
            db.close()

        assert user.email == "maria@example.com"
        assert user.password_hash != "Str0ng!Pass"
        assert verify_password("Str0ng!Pass", user.password_hash)
        assert profile.first_name == "Maria"
        assert profile.menopause_phase == "pre-menopause"
        assert profile.cycle_info["last_period_date"] == "2026-10-01"
        assert profile.symptoms["hot_flashes"] is True
        assert profile.concerns["sleep_quality"] is True

    def test_preferences_merged_over_defaults(self, service, session_factory):
        result = asyncio.run(service.complete_signup(make_valid_draft()))

        db = session_factory()
        try:
            preferences = UserRepository(db).get_profile(result.user_id).preferences
        finally:
            db.close()

        assert preferences["theme"] == "light"
        assert preferences["language"] == "en"
        assert preferences["notifications"] is True
        assert preferences["data_sharing"] is False

    def test_profile_image_is_referenced_by_user_id(self, service):
        draft = make_valid_draft()
        draft.profile_image = "file:///tmp/me.jpg"

        result = asyncio.run(service.complete_signup(draft))

        assert result.profile_image_url == (
            "https://storage.googleapis.com/menoguide-profiles/"
            f"{result.user_id}/profile.jpg"
        )

    def test_email_is_normalized(self, service, session_factory):
        draft = make_valid_draft()
        draft.email = "  Maria@Example.COM "

        result = asyncio.run(service.complete_signup(draft))

        db = session_factory()
        try:
            assert UserRepository(db).get_user(result.user_id).email == "maria@example.com"
        finally:
            db.close()

    def test_duplicate_email_rejected(self, service, session_factory):
        asyncio.run(service.complete_signup(make_valid_draft()))
        second = make_valid_draft()
        second.email = "MARIA@example.com"

        with pytest.raises(SignupError, match="An account with this email already exists"):
            asyncio.run(service.complete_signup(second))

        assert _count(session_factory, User) == 1

    def test_profile_failure_rolls_back_account(self, service, session_factory, monkeypatch):
        def failing_save_profile(self, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(UserRepository, "save_profile", failing_save_profile)

        with pytest.raises(SignupError, match="Failed to save profile: OperationalError"):
            asyncio.run(service.complete_signup(make_valid_draft()))

        assert _count(session_factory, User) == 0
        assert _count(session_factory, UserProfile) == 0

    def test_account_failure_is_reported(self, service, monkeypatch):
        def failing_create_user(self, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(UserRepository, "create_user", failing_create_user)

        with pytest.raises(SignupError, match="Failed to create account: OperationalError"):
            asyncio.run(service.complete_signup(make_valid_draft()))


# ── Profile lookup ───────────────────────────────────────────────────────


class TestGetUserProfile:

    def test_unknown_user(self, service):
        assert service.get_user_profile("user_missing") is None

    def test_profile_view_of_new_account(self, service):
        result = asyncio.run(service.complete_signup(make_valid_draft()))

        profile = service.get_user_profile(result.user_id)

        assert profile.username == "Maria Silva"
        assert profile.avatar_url == DEFAULT_AVATAR_URL
        assert profile.dietary_preferences == "vegetarian"
        assert profile.menopause_notes == ""
