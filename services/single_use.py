"""
SingleUseTokenService: email-verification and password-reset links.

Per token: Issued -> Used, or Issued -> Expired. verify() tells the three
failure cases apart (never issued, already used, expired) so a user clicking a
mailed link twice is told it was already used rather than that it is invalid.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import quote

from models.base_model import utcnow
from models.email_verification_token import EmailVerificationToken
from models.password_reset_token import PasswordResetToken
from services.exceptions import TokenAlreadyUsed, TokenExpired, TokenInvalid, ValidationError
from services.settings import AuthSettings, RequestMeta
from utils.security import generate_token

logger = logging.getLogger(__name__)

EMAIL_VERIFICATION = "email_verification"
PASSWORD_RESET = "password_reset"

TOKEN_MODELS = {
    EMAIL_VERIFICATION: EmailVerificationToken,
    PASSWORD_RESET: PasswordResetToken,
}

ALREADY_USED_MESSAGES = {
    EMAIL_VERIFICATION: "Your email has already been verified. You can now log in to your account.",
    PASSWORD_RESET: "This password reset link has already been used. Please request a new one if needed.",
}

INVALID_MESSAGES = {
    EMAIL_VERIFICATION: "Invalid email verification token",
    PASSWORD_RESET: "Invalid or expired password reset token",
}


class SingleUseTokenService:
    def __init__(self, storage, settings: AuthSettings):
        self.storage = storage
        self.settings = settings

    def _model(self, kind: str):
        try:
            return TOKEN_MODELS[kind]
        except KeyError:
            raise ValidationError(f"Unknown token kind: {kind}")

    def ttl(self, kind: str) -> timedelta:
        if kind == PASSWORD_RESET:
            return self.settings.password_reset_ttl
        return self.settings.email_verification_ttl

    def generate(self, kind: str, user, meta: Optional[RequestMeta] = None,
                 ttl: Optional[timedelta] = None):
        """
        Issue a new token of `kind` for user. Outstanding unused tokens of the same
        kind are invalidated in the same transaction, leaving one live link.
        Superseded rows keep used_at NULL, which separates them from consumed ones.
        """
        model = self._model(kind)
        meta = meta or RequestMeta()
        now = utcnow()

        self.storage.update_where(
            model,
            (model.user_id == str(user.id), model.is_used.is_(False)),
            {"is_used": True},
            commit=False,
        )
        row = model(
            user_id=str(user.id),
            email=user.email,
            token=generate_token(32),
            expires_at=now + (ttl if ttl is not None else self.ttl(kind)),
            is_used=False,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent,
        )
        self.storage.new(row)
        self.storage.save()
        # superseded rows may still sit in the identity map with is_used False
        self.storage.get_session().expire_all()
        logger.info("Issued %s token for user %s", kind, user.id)
        return row

    def verify(self, kind: str, value: str):
        """Return the live row for value, or raise the precise reason it is not live."""
        model = self._model(kind)
        if not value:
            raise TokenInvalid(INVALID_MESSAGES[kind])

        session = self.storage.get_session()
        row = (
            session.query(model)
            .filter(model.token == value, model.is_used.is_(False), model.expires_at > utcnow())
            .first()
        )
        if row is not None:
            return row

        other = session.query(model).filter(model.token == value).first()
        if other is None:
            raise TokenInvalid(INVALID_MESSAGES[kind])
        if other.is_used and other.used_at is None:
            raise TokenInvalid("This link has been replaced by a newer one. Please use the latest email.")
        if other.is_used:
            raise TokenAlreadyUsed(ALREADY_USED_MESSAGES[kind])
        if other.is_expired():
            raise TokenExpired("This link has expired. Please request a new one.")
        raise TokenInvalid(INVALID_MESSAGES[kind])

    def consume(self, kind: str, value: str) -> bool:
        """
        Mark value used. Call only after the side effect it authorises has been
        committed; True only for the caller that flipped it.
        """
        model = self._model(kind)
        changed = self.storage.update_where(
            model,
            (model.token == value, model.is_used.is_(False)),
            {"is_used": True, "used_at": utcnow()},
        )
        return changed == 1

    def redeem(self, kind: str, value: str) -> None:
        """
        Mark value used inside the caller's open transaction, so the side effect
        the caller writes next commits together with it. Losing the race rolls
        back and raises TokenAlreadyUsed.
        """
        model = self._model(kind)
        changed = self.storage.update_where(
            model,
            (model.token == value, model.is_used.is_(False)),
            {"is_used": True, "used_at": utcnow()},
            commit=False,
        )
        if changed != 1:
            self.storage.rollback()
            logger.warning("Concurrent redemption of a %s token refused", kind)
            raise TokenAlreadyUsed(ALREADY_USED_MESSAGES[kind])

    def verification_url(self, value: str) -> str:
        return f"{self.settings.client_url}/verify-email?token={quote(value)}"

    def reset_url(self, value: str) -> str:
        return f"{self.settings.client_url}/reset-password?token={quote(value)}"
