"""
PasswordResetToken model: mailed link allowing a password to be set without the
current one. Default lifetime is 1 hour (PASSWORD_RESET_EXPIRES). At most one
unused, unexpired row exists per user.
"""
from models.base_model import Base, BaseModel, OneTimeTokenMixin


class PasswordResetToken(OneTimeTokenMixin, BaseModel, Base):
    __tablename__ = "password_reset_tokens"

    def __repr__(self):
        return f"<PasswordResetToken user={self.user_id} used={self.is_used}>"
