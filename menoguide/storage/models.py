from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship
from datetime import datetime
from .database import Base


class User(Base):
    """
    User account created at the end of the signup wizard.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(200), nullable=False, unique=True, index=True)
    password_hash = Column(String(256), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_login = Column(DateTime, nullable=True)

    profile = relationship("UserProfile", back_populates="user", uselist=False)


class UserProfile(Base):
    """
    Profile document saved alongside the account.
    """
    __tablename__ = "user_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False, unique=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    menopause_phase = Column(String(30), nullable=False)
    cycle_info = Column(JSON, nullable=True)
    symptoms = Column(JSON, nullable=True)
    concerns = Column(JSON, nullable=True)
    preferences = Column(JSON, nullable=True)
    profile_image_url = Column(String(500), nullable=True)
    menopause_notes = Column(String(2000), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="profile")
