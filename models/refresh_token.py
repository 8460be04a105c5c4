"""
RefreshToken model: one row per issued refresh token, looked up by its opaque value.
Fields:
- token (unique, opaque random string)
- user_id (String(36)) - FK to users.id
- expires_at, is_revoked, revoked_at
- ip_address, user_agent of the request that obtained it

Rows are never mutated except for is_revoked/revoked_at.
"""
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey
from models.base_model import BaseModel, Base


class RefreshToken(BaseModel, Base):
    __tablename__ = "refresh_tokens"

    token = Column(String(128), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_revoked = Column(Boolean, default=False, nullable=False)
    revoked_at = Column(DateTime, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    def __repr__(self):
        return f"<RefreshToken user={self.user_id} revoked={self.is_revoked}>"
