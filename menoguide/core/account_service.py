import asyncio
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import SQLAlchemyError
from .signup_state import SignupDraft
from .state_store import ProfileData
from ..storage.repository import UserRepository

logger = logging.getLogger(__name__)

PROFILE_IMAGE_BASE_URL = "https://storage.googleapis.com/menoguide-profiles"
DEFAULT_AVATAR_URL = "https://placehold.co/100x100.png"
DEFAULT_PREFERENCES = {"theme": "light", "language": "en"}

_PBKDF2_ITERATIONS = 260_000


class SignupError(RuntimeError):
    """
    Account creation failed. The message is safe to show to the user.
    """


@dataclass
class SignupResult:
    user_id: str
    profile_image_url: Optional[str] = None


def hash_password(password: str) -> str:
    salt = os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), digest_hex)


class AccountService:
    """
    Creates the user account and profile at the end of the signup wizard.

    Account, profile image reference and profile document are written in a
    single transaction; any failure rolls everything back and surfaces as a
    SignupError.
    """

    def __init__(
        self,
        db_session_factory: sessionmaker,
        image_base_url: str = PROFILE_IMAGE_BASE_URL,
    ) -> None:
        self._db_session_factory = db_session_factory
        self._image_base_url = image_base_url.rstrip("/")

    async def complete_signup(self, draft: SignupDraft) -> SignupResult:
        # SQLAlchemy work is blocking, keep it off the event loop
        return await asyncio.to_thread(self._complete_signup_sync, draft)

    def _complete_signup_sync(self, draft: SignupDraft) -> SignupResult:
        email = (draft.email or "").strip().lower()
        db_session: Session = self._db_session_factory()
        try:
            repo = UserRepository(db_session)

            if repo.find_by_email(email):
                logger.warning(f"Signup with an email that is already registered: email={email}")
                raise SignupError("An account with this email already exists")

            user_id = f"user_{uuid4().hex}"
            try:
                repo.create_user(
                    user_id=user_id,
                    email=email,
                    password_hash=hash_password(draft.password or ""),
                )
            except SQLAlchemyError as e:
                raise SignupError(f"Failed to create account: {type(e).__name__}") from e

            profile_image_url = None
            if draft.profile_image:
                profile_image_url = f"{self._image_base_url}/{user_id}/profile.jpg"

            preferences = dict(DEFAULT_PREFERENCES)
            if draft.preferences:
                preferences.update(draft.preferences.to_dict())

            try:
                repo.save_profile(
                    user_id=user_id,
                    first_name=(draft.first_name or "").strip(),
                    last_name=(draft.last_name or "").strip(),
                    menopause_phase=draft.menopause_phase.value if draft.menopause_phase else "",
                    cycle_info=draft.cycle_info.to_dict() if draft.cycle_info else None,
                    symptoms=draft.symptoms.to_dict() if draft.symptoms else None,
                    concerns=draft.concerns.to_dict() if draft.concerns else None,
                    preferences=preferences,
                    profile_image_url=profile_image_url,
                )
                db_session.commit()
            except SQLAlchemyError as e:
                raise SignupError(f"Failed to save profile: {type(e).__name__}") from e

            logger.info(
                f"Account created: user_id={user_id}, email={email}, "
                f"phase={draft.menopause_phase.value if draft.menopause_phase else None}"
            )
            return SignupResult(user_id=user_id, profile_image_url=profile_image_url)
        except Exception as e:
            db_session.rollback()
            logger.error(
                f"Signup rolled back: email={email}, "
                f"error={type(e).__name__}: {e}",
                exc_info=not isinstance(e, SignupError),
            )
            raise
        finally:
            db_session.close()

    def get_user_profile(self, user_id: str) -> Optional[ProfileData]:
        db_session: Session = self._db_session_factory()
        try:
            profile = UserRepository(db_session).get_profile(user_id)
            if profile is None:
                return None
            preferences = profile.preferences or {}
            return ProfileData(
                username=f"{profile.first_name} {profile.last_name}".strip(),
                avatar_url=profile.profile_image_url or DEFAULT_AVATAR_URL,
                dietary_preferences=preferences.get("dietary_preferences") or "vegetarian",
                menopause_notes=profile.menopause_notes or "",
            )
        finally:
            db_session.close()
