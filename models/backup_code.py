from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from models.base_model import BaseModel, Base


class BackupCode(BaseModel, Base):
    """
    Single-use 2FA fallback code. Only the sha256 digest of the normalized code
    (separators stripped, upper-cased) is stored; the plaintext is shown once.
    """
    __tablename__ = "backup_codes"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False, index=True)
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="backup_codes")
