"""
EmailVerificationToken model: mailed link proving ownership of User.email.
Default lifetime is 24 hours (EMAIL_VERIFICATION_EXPIRES).
"""
from models.base_model import Base, BaseModel, OneTimeTokenMixin


class EmailVerificationToken(OneTimeTokenMixin, BaseModel, Base):
    __tablename__ = "email_verification_tokens"

    def __repr__(self):
        return f"<EmailVerificationToken user={self.user_id} used={self.is_used}>"
