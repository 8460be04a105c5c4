from models.base_model import Base, BaseModel, utcnow
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.orm import relationship


class User(BaseModel, Base):
    """Security view of a platform account."""
    __tablename__ = "users"
    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone = Column(String(32), nullable=True)
    password_hash = Column(String(255), nullable=True)
    # False for OAuth-created accounts whose hash is a random, never-disclosed placeholder
    has_password = Column(Boolean, default=True, nullable=False)
    password_history = Column(JSON, nullable=False, default=lambda: [])

    is_admin = Column(Boolean, default=False, nullable=False)
    is_owner = Column(Boolean, default=False, nullable=False)

    is_email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime, nullable=True)

    is_suspended = Column(Boolean, default=False, nullable=False)
    suspension_reason = Column(String(255), nullable=True)

    failed_login_attempts = Column(Integer, default=0, nullable=False)
    lock_until = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    last_login_ip = Column(String(64), nullable=True)

    is_two_factor_enabled = Column(Boolean, default=False, nullable=False)
    two_factor_secret = Column(String(64), nullable=True)

    google_id = Column(String(128), nullable=True, unique=True, index=True)
    facebook_id = Column(String(128), nullable=True, unique=True, index=True)

    backup_codes = relationship(
        "BackupCode",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    owner_profile = relationship(
        "OwnerProfile",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def account_suspended(self) -> bool:
        """Suspended directly, or through the owner profile of an owner account."""
        if self.is_suspended:
            return True
        if self.is_owner and self.owner_profile is not None:
            return bool(self.owner_profile.is_suspended)
        return False

    def is_locked(self, now=None) -> bool:
        return self.lock_until is not None and self.lock_until > (now or utcnow())


class OwnerProfile(BaseModel, Base):
    """Campground-owner profile; only its suspension state matters to auth."""
    __tablename__ = "owner_profiles"
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    business_name = Column(String(255), nullable=True)
    is_suspended = Column(Boolean, default=False, nullable=False)
    suspension_reason = Column(String(255), nullable=True)
    suspended_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="owner_profile")
