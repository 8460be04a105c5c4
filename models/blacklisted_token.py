from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from models.base_model import BaseModel, Base

BLACKLIST_REASONS = ("logout", "logout_all", "two_factor_complete", "security_concern", "admin_action")


class BlacklistedToken(BaseModel, Base):
    """Access token revoked before its natural expiry; stored by sha256 digest."""
    __tablename__ = "blacklisted_tokens"

    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_type = Column(String(16), nullable=False, default="access")
    blacklisted_at = Column(DateTime, server_default=func.now(), nullable=False)
    # mirrors the exp claim of the source token; rows past it can be pruned
    expires_at = Column(DateTime, nullable=False, index=True)
    reason = Column(String(32), nullable=False, default="logout")
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    def __repr__(self):
        return f"<BlacklistedToken user={self.user_id} reason={self.reason}>"
