"""
TwoFactorService: TOTP (pyotp) plus single-use backup codes.

States: Disabled -> SetupInitiated (secret stored, not enabled) -> Enabled -> Disabled.
"""
from __future__ import annotations

import logging
import re
import secrets
from typing import List, Optional

import pyotp

from models.backup_code import BackupCode
from models.base_model import utcnow
from models.user import User
from services.exceptions import TwoFactorInvalidCode, ValidationError
from services.settings import AuthSettings
from services.tokens import TokenIssuer
from utils.security import token_digest

logger = logging.getLogger(__name__)

# one 30s step either side of now
TOTP_VALID_WINDOW = 1
_SEPARATORS = re.compile(r"[\s\-]")


def normalize_backup_code(code: str) -> str:
    return _SEPARATORS.sub("", code or "").upper()


def generate_backup_codes(count: int) -> List[str]:
    """Distinct XXXX-XXXX hex codes."""
    codes = set()
    while len(codes) < count:
        raw = secrets.token_hex(4).upper()
        codes.add(f"{raw[:4]}-{raw[4:]}")
    return sorted(codes)


def looks_like_totp(code: str) -> bool:
    code = (code or "").strip()
    return len(code) == 6 and code.isdigit()


class TwoFactorService:
    def __init__(self, storage, issuer: TokenIssuer, settings: AuthSettings):
        self.storage = storage
        self.issuer = issuer
        self.settings = settings

    def verify_totp(self, user, code: str) -> bool:
        if not user.two_factor_secret or not looks_like_totp(code):
            return False
        totp = pyotp.TOTP(user.two_factor_secret)
        return totp.verify(code.strip(), valid_window=TOTP_VALID_WINDOW)

    def initiate_setup(self, user) -> dict:
        """
        Store a fresh secret without enabling 2FA. Calling again before
        confirmation replaces the pending secret.
        """
        if user.is_two_factor_enabled:
            raise ValidationError("Two-factor authentication is already enabled for this account")

        secret = pyotp.random_base32()
        otpauth_url = pyotp.TOTP(secret).provisioning_uri(
            name=user.username, issuer_name=self.settings.two_factor_issuer
        )
        user.two_factor_secret = secret
        self.storage.new(user)
        self.storage.save()
        logger.info("2FA setup initiated for user %s", user.id)
        return {"secret": secret, "otpauthUrl": otpauth_url, "setupCompleted": False}

    def confirm_setup(self, user, code: str) -> List[str]:
        """
        Enable 2FA if code matches the pending secret. Returns the plaintext
        backup codes; only their digests are kept.
        """
        if user.is_two_factor_enabled:
            raise ValidationError("Two-factor authentication is already enabled for this account")
        if not user.two_factor_secret:
            raise ValidationError("Two-factor setup has not been initiated")
        if not self.verify_totp(user, code):
            logger.warning("Invalid 2FA setup code for user %s", user.id)
            raise TwoFactorInvalidCode()

        secret = user.two_factor_secret
        enabled = self.storage.update_where(
            User,
            (
                User.id == user.id,
                User.is_two_factor_enabled.is_(False),
                User.two_factor_secret == secret,
            ),
            {"is_two_factor_enabled": True},
            commit=False,
        )
        if enabled != 1:
            self.storage.rollback()
            raise ValidationError("Two-factor authentication is already enabled for this account")

        codes = generate_backup_codes(self.settings.backup_code_count)
        session = self.storage.get_session()
        session.query(BackupCode).filter(BackupCode.user_id == user.id).delete(synchronize_session=False)
        for code_value in codes:
            self.storage.new(BackupCode(
                user_id=user.id,
                code_hash=token_digest(normalize_backup_code(code_value)),
                is_used=False,
            ))
        self.storage.save()
        session.expire_all()
        logger.info("2FA enabled for user %s", user.id)
        return codes

    def challenge(self, user) -> dict:
        """Response for a password-verified login that still needs a second factor."""
        return {
            "requiresTwoFactor": True,
            "message": "Two-factor authentication required",
            "tempAccessToken": self.issuer.issue_pending(user),
        }

    def consume_backup_code(self, user, code: str) -> bool:
        """Burn exactly one matching unused code. Other codes are untouched."""
        normalized = normalize_backup_code(code)
        if not normalized:
            return False
        changed = self.storage.update_where(
            BackupCode,
            (
                BackupCode.user_id == user.id,
                BackupCode.code_hash == token_digest(normalized),
                BackupCode.is_used.is_(False),
            ),
            {"is_used": True, "used_at": utcnow()},
        )
        return changed == 1

    def verify_second_factor(self, user, code: str, use_backup_code: Optional[bool] = None) -> bool:
        """
        TOTP or backup code. Without an explicit flag, six digits are treated as
        TOTP and anything else as a backup code.
        """
        if not user.is_two_factor_enabled:
            raise ValidationError("Two-factor authentication is not enabled for this account")
        if use_backup_code is None:
            use_backup_code = not looks_like_totp(code)
        if use_backup_code:
            ok = self.consume_backup_code(user, code)
            if ok:
                logger.info("Backup code used by user %s (%d left)", user.id, self.remaining_backup_codes(user))
        else:
            ok = self.verify_totp(user, code)
        if not ok:
            logger.warning("Invalid 2FA login code for user %s", user.id)
        return ok

    def remaining_backup_codes(self, user) -> int:
        session = self.storage.get_session()
        return (
            session.query(BackupCode)
            .filter(BackupCode.user_id == user.id, BackupCode.is_used.is_(False))
            .count()
        )

    def disable(self, user, code: str) -> None:
        """Requires a current TOTP; backup codes are not accepted here."""
        if not user.is_two_factor_enabled:
            raise ValidationError("Two-factor authentication is not enabled for this account")
        if not self.verify_totp(user, code):
            logger.warning("Invalid 2FA disable code for user %s", user.id)
            raise TwoFactorInvalidCode()

        session = self.storage.get_session()
        session.query(BackupCode).filter(BackupCode.user_id == user.id).delete(synchronize_session=False)
        user.is_two_factor_enabled = False
        user.two_factor_secret = None
        self.storage.new(user)
        self.storage.save()
        session.expire_all()
        logger.info("2FA disabled for user %s", user.id)
