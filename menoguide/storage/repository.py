import logging
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session
from .models import User, UserProfile

logger = logging.getLogger(__name__)


class UserRepository:
    """
    Persistence operations for user accounts and profiles.

    Writes are flushed, not committed: the caller owns the transaction so an
    account and its profile are stored together or not at all.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_by_email(self, email: str) -> Optional[User]:
        return (
            self._db.query(User)
            .filter(User.email == email.strip().lower())
            .one_or_none()
        )

    def get_user(self, user_id: str) -> Optional[User]:
        return self._db.get(User, user_id)

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return (
            self._db.query(UserProfile)
            .filter(UserProfile.user_id == user_id)
            .one_or_none()
        )

    def create_user(self, user_id: str, email: str, password_hash: str) -> User:
        logger.debug(f"Creating user: id={user_id}, email={email}")

        user = User(
            id=user_id,
            email=email.strip().lower(),
            password_hash=password_hash,
        )
        self._db.add(user)
        self._db.flush()
        return user

    def save_profile(
        self,
        user_id: str,
        first_name: str,
        last_name: str,
        menopause_phase: str,
        cycle_info: Optional[Dict[str, Any]] = None,
        symptoms: Optional[Dict[str, Any]] = None,
        concerns: Optional[Dict[str, Any]] = None,
        preferences: Optional[Dict[str, Any]] = None,
        profile_image_url: Optional[str] = None,
    ) -> UserProfile:
        logger.debug(
            f"Saving profile: user_id={user_id}, phase={menopause_phase}, "
            f"has_cycle_info={cycle_info is not None}"
        )

        profile = UserProfile(
            user_id=user_id,
            first_name=first_name,
            last_name=last_name,
            menopause_phase=menopause_phase,
            cycle_info=cycle_info,
            symptoms=symptoms,
            concerns=concerns,
            preferences=preferences,
            profile_image_url=profile_image_url,
        )
        self._db.add(profile)
        self._db.flush()
        return profile
