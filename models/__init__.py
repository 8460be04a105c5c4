from models.user import User, OwnerProfile
from models.backup_code import BackupCode
from models.refresh_token import RefreshToken
from models.blacklisted_token import BlacklistedToken
from models.email_verification_token import EmailVerificationToken
from models.password_reset_token import PasswordResetToken
from models.db_storage import DBStorage

__all__ = [
    "User",
    "OwnerProfile",
    "BackupCode",
    "RefreshToken",
    "BlacklistedToken",
    "EmailVerificationToken",
    "PasswordResetToken",
    "DBStorage",
]
