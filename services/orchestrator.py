"""
AuthOrchestrator: the flows the HTTP layer exposes.

register, login, refresh, logout, logout_all, verify_email, resend_verification,
request_password_reset, reset_password, change_password, the two-factor flows,
oauth_login, auth_status and authenticate.

It owns no state of its own: storage, hasher, notifier and OAuth providers are
passed in by the application factory.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.attributes import flag_modified

from models.base_model import utcnow
from models.user import User
from services.exceptions import (
    AccountLocked,
    AccountNotVerified,
    AccountSuspended,
    Conflict,
    InvalidCredentials,
    TokenExpired,
    TokenInvalid,
    TwoFactorInvalidCode,
    TwoFactorRequired,
    Unauthenticated,
    ValidationError,
)
from services.notifier import (
    Notifier,
    password_reset_email,
    security_notice_email,
    verification_email,
)
from services.oauth import OAuthLinker, OAuthProvider
from services.revocation import RevocationService
from services.settings import AuthResult, AuthSettings, RequestMeta
from services.single_use import EMAIL_VERIFICATION, PASSWORD_RESET, SingleUseTokenService
from services.tokens import PENDING_TWO_FACTOR_SCOPE, TokenIssuer
from services.two_factor import TwoFactorService
from utils.security import PasswordHasher, validate_password_strength

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If your email is registered, you will receive a password reset link shortly."


def user_summary(user) -> dict:
    """Non-sensitive profile fields returned alongside auth responses."""
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "phone": user.phone,
        "isAdmin": bool(user.is_admin),
        "isOwner": bool(user.is_owner),
        "isEmailVerified": bool(user.is_email_verified),
        "isTwoFactorEnabled": bool(user.is_two_factor_enabled),
    }


class AuthOrchestrator:
    def __init__(self, storage, settings: AuthSettings, hasher: PasswordHasher, notifier: Notifier,
                 oauth_providers: Optional[Dict[str, OAuthProvider]] = None):
        self.storage = storage
        self.settings = settings
        self.hasher = hasher
        self.notifier = notifier
        self.providers = dict(oauth_providers or {})

        self.issuer = TokenIssuer(storage, settings)
        self.revocation = RevocationService(storage, self.issuer)
        self.single_use = SingleUseTokenService(storage, settings)
        self.two_factor = TwoFactorService(storage, self.issuer, settings)
        self.oauth = OAuthLinker(storage, hasher)

    # ---- helpers -------------------------------------------------------------

    def _notify(self, user, message) -> Optional[str]:
        """Send mail; a delivery failure is logged and never fails the flow."""
        subject, text, html = message
        try:
            return self.notifier.send(user.email, subject, text, html)
        except Exception:
            logger.exception("Failed to send '%s' to user %s", subject, user.id)
            return None

    def _send_verification(self, user, meta) -> bool:
        row = self.single_use.generate(EMAIL_VERIFICATION, user, meta)
        url = self.single_use.verification_url(row.token)
        return self._notify(user, verification_email(user, url)) is not None

    @staticmethod
    def _append_password_history(user, reason: str, meta: RequestMeta) -> None:
        history = list(user.password_history or [])
        history.append({
            "date": utcnow().isoformat(),
            "reason": reason,
            "ipAddress": meta.ip_address,
            "userAgent": meta.user_agent,
        })
        user.password_history = history
        flag_modified(user, "password_history")

    def _record_failed_login(self, user) -> None:
        now = utcnow()
        self.storage.update_where(
            User,
            (User.id == user.id,),
            {"failed_login_attempts": User.failed_login_attempts + 1},
        )
        if (user.failed_login_attempts or 0) >= self.settings.max_failed_logins:
            self.storage.update_where(
                User,
                (User.id == user.id,),
                {"lock_until": now + self.settings.lockout_duration, "failed_login_attempts": 0},
            )
            logger.warning("Account %s locked after repeated failed logins", user.id)

    def _issue_session(self, user, meta: RequestMeta) -> dict:
        pair = self.issuer.issue_pair(user, meta)
        user.last_login_at = utcnow()
        user.last_login_ip = meta.ip_address
        self.storage.new(user)
        self.storage.save()
        return {**pair.to_dict(), "user": user_summary(user)}

    def _complete_primary_login(self, user, meta: RequestMeta) -> dict:
        """Suspension gate, then either the 2FA challenge or a full token pair."""
        if user.account_suspended:
            raise AccountSuspended()
        if user.is_two_factor_enabled:
            return {**self.two_factor.challenge(user), "user": user_summary(user)}
        return self._issue_session(user, meta)

    # ---- registration and login ---------------------------------------------

    def register(self, data: dict, meta: Optional[RequestMeta] = None) -> dict:
        meta = meta or RequestMeta()
        username = data["username"].strip()
        email = data["email"].strip().lower()
        password = data["password"]
        validate_password_strength(password)

        if self.storage.username_or_email_taken(username, email):
            raise Conflict("A user with that email or username already exists")

        user = User(
            username=username,
            email=email,
            phone=data.get("phone"),
            password_hash=self.hasher.hash(password),
            has_password=True,
            password_history=[],
            is_email_verified=False,
        )
        self.storage.new(user)
        try:
            self.storage.save()
        except IntegrityError:
            raise Conflict("A user with that email or username already exists")

        self._send_verification(user, meta)
        logger.info("Registered user %s", user.id)
        return {
            "user": user_summary(user),
            "message": "Registration successful. Please check your email to verify your account before logging in.",
        }

    def login(self, identifier: str, password: str, meta: Optional[RequestMeta] = None) -> dict:
        meta = meta or RequestMeta()
        user = self.storage.find_user_by_login(identifier)
        if user is None:
            # same hashing cost as a real account
            self.hasher.verify(password or "", None)
            raise InvalidCredentials()

        if user.is_locked():
            raise AccountLocked(details={"lockUntil": user.lock_until.isoformat() + "Z"})

        stored = user.password_hash if user.has_password else None
        if not self.hasher.verify(password or "", stored):
            self._record_failed_login(user)
            raise InvalidCredentials()

        if self.hasher.needs_rehash(user.password_hash):
            user.password_hash = self.hasher.hash(password)
        user.failed_login_attempts = 0
        user.lock_until = None
        self.storage.new(user)
        self.storage.save()

        if not user.is_email_verified:
            self._send_verification(user, meta)
            raise AccountNotVerified(details={"user": user_summary(user)})

        return self._complete_primary_login(user, meta)

    def refresh(self, value: str, meta: Optional[RequestMeta] = None) -> dict:
        if not value:
            raise ValidationError("Refresh token is required")
        user, pair = self.revocation.rotate(value, meta or RequestMeta())
        return pair.to_dict()

    def logout(self, refresh_value: Optional[str], auth: Optional[AuthResult] = None,
               meta: Optional[RequestMeta] = None) -> dict:
        """Revoke the refresh token and blacklist the presented access token."""
        if refresh_value:
            self.revocation.revoke_refresh_token(refresh_value)
        if auth is not None and auth.ok:
            self.revocation.blacklist_access(auth.token, auth.user, "logout", meta)
            logger.info("Access token blacklisted for user %s during logout", auth.user.id)
        return {"message": "Logged out successfully"}

    def logout_all(self, auth: AuthResult, meta: Optional[RequestMeta] = None) -> dict:
        self.revocation.revoke_all_user_tokens(auth.user.id)
        self.revocation.blacklist_access(auth.token, auth.user, "logout_all", meta)
        return {"message": "Logged out from all devices successfully"}

    # ---- email verification and password reset ------------------------------

    def verify_email(self, value: str) -> dict:
        row = self.single_use.verify(EMAIL_VERIFICATION, value)
        user = self.storage.get(User, row.user_id)
        if user is None:
            raise TokenInvalid("Invalid email verification token")

        # token spent and user verified in one transaction
        self.single_use.redeem(EMAIL_VERIFICATION, value)
        self.storage.update_where(
            User,
            (User.id == user.id, User.is_email_verified.is_(False)),
            {"is_email_verified": True, "email_verified_at": utcnow()},
            commit=False,
        )
        self.storage.save()
        self.storage.get_session().expire_all()
        logger.info("Email verified for user %s", user.id)
        return {"message": "Email verified successfully", "user": user_summary(user)}

    def resend_verification(self, user, meta: Optional[RequestMeta] = None) -> dict:
        if user.is_email_verified:
            raise ValidationError("Email is already verified")
        sent = self._send_verification(user, meta or RequestMeta())
        return {"message": "Verification email sent successfully", "emailSent": sent}

    def request_password_reset(self, email: str, meta: Optional[RequestMeta] = None) -> dict:
        """Same answer whether or not the email is registered."""
        if not email:
            raise ValidationError("Email is required")
        user = self.storage.find_user_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return {"message": RESET_REQUESTED_MESSAGE}

        row = self.single_use.generate(PASSWORD_RESET, user, meta or RequestMeta())
        self._notify(user, password_reset_email(user, self.single_use.reset_url(row.token)))
        return {"message": RESET_REQUESTED_MESSAGE}

    def reset_password(self, value: str, new_password: str, meta: Optional[RequestMeta] = None) -> dict:
        meta = meta or RequestMeta()
        validate_password_strength(new_password)
        row = self.single_use.verify(PASSWORD_RESET, value)
        user = self.storage.get(User, row.user_id)
        if user is None:
            raise TokenInvalid("Invalid or expired password reset token")

        new_hash = self.hasher.hash(new_password)
        # token spent and password written in one transaction
        self.single_use.redeem(PASSWORD_RESET, value)
        user.password_hash = new_hash
        user.has_password = True
        user.failed_login_attempts = 0
        user.lock_until = None
        self._append_password_history(user, "reset", meta)
        self.storage.new(user)
        self.storage.save()

        self.revocation.revoke_all_user_tokens(user.id)
        self._notify(user, security_notice_email(user, "Your password was reset."))
        logger.info("Password reset for user %s", user.id)
        return {"message": "Password has been reset successfully. You can now log in with your new password."}

    def change_password(self, user, current_password: str, new_password: str,
                        meta: Optional[RequestMeta] = None) -> dict:
        meta = meta or RequestMeta()
        stored = user.password_hash if user.has_password else None
        if not self.hasher.verify(current_password or "", stored):
            raise InvalidCredentials("Current password is incorrect")
        validate_password_strength(new_password)
        if self.hasher.verify(new_password, user.password_hash):
            raise ValidationError("New password must be different from the current password")

        user.password_hash = self.hasher.hash(new_password)
        self._append_password_history(user, "change", meta)
        self.storage.new(user)
        self.storage.save()
        self._notify(user, security_notice_email(user, "Your password was changed."))
        return {"message": "Password changed successfully"}

    # ---- two-factor ----------------------------------------------------------

    def two_factor_setup(self, user) -> dict:
        return {"message": "Two-factor authentication setup initiated", **self.two_factor.initiate_setup(user)}

    def two_factor_verify_setup(self, user, code: str) -> dict:
        codes = self.two_factor.confirm_setup(user, code)
        self._notify(user, security_notice_email(user, "Two-factor authentication was enabled on your account."))
        return {
            "message": "Two-factor authentication enabled successfully",
            "backupCodes": codes,
            "setupCompleted": True,
        }

    def two_factor_verify_login(self, auth: AuthResult, code: str, use_backup_code: Optional[bool] = None,
                                meta: Optional[RequestMeta] = None) -> dict:
        """Second step of a 2FA login; needs the pending token from login()."""
        meta = meta or RequestMeta()
        if not auth.is_pending_two_factor:
            raise ValidationError("No two-factor login in progress")
        user = auth.user
        if not self.two_factor.verify_second_factor(user, code, use_backup_code):
            message = "Invalid backup code" if use_backup_code else "Invalid verification code"
            raise TwoFactorInvalidCode(message)
        if user.account_suspended:
            raise AccountSuspended()

        # the pending token is spent; only its first redeemer gets a session
        if not self.revocation.claim_access(auth.token, user, "two_factor_complete", meta):
            logger.warning("Replayed two-factor login for user %s refused", user.id)
            raise TokenInvalid("This two-factor login has already been completed")
        return {"message": "Two-factor authentication successful", **self._issue_session(user, meta)}

    def two_factor_disable(self, user, code: str) -> dict:
        self.two_factor.disable(user, code)
        self._notify(user, security_notice_email(user, "Two-factor authentication was disabled on your account."))
        return {"message": "Two-factor authentication disabled successfully"}

    # ---- OAuth ---------------------------------------------------------------

    def oauth_login(self, provider: str, code: str, redirect_uri: str,
                    meta: Optional[RequestMeta] = None) -> dict:
        if not code or not redirect_uri:
            raise ValidationError("Authorization code and redirect URI are required")
        client = self.providers.get(provider)
        if client is None:
            raise ValidationError(f"Unsupported OAuth provider: {provider}")
        profile = client.authenticate(code, redirect_uri)
        user = self.oauth.resolve(provider, profile)
        return self._complete_primary_login(user, meta or RequestMeta())

    # ---- request authentication ----------------------------------------------

    def authenticate(self, token: Optional[str], allow_pending: bool = False) -> AuthResult:
        """
        Verify signature and expiry, then the blacklist, then load the user.
        Any failure, store errors included, is an Unauthenticated result.
        """
        if not token:
            return AuthResult.failure(Unauthenticated("No authentication token provided"))
        try:
            claims = self.issuer.decode_access(token)
        except TokenExpired:
            return AuthResult.failure(Unauthenticated("Token has expired", details={"reason": TokenExpired.code}))
        except TokenInvalid as exc:
            return AuthResult.failure(Unauthenticated(exc.message, details={"reason": TokenInvalid.code}))

        try:
            if self.revocation.is_blacklisted(token):
                return AuthResult.failure(Unauthenticated("Token has been revoked"))
            user = self.storage.get(User, claims["sub"])
            suspended = user is not None and user.account_suspended
        except SQLAlchemyError:
            self.storage.rollback()
            logger.exception("Store failure while authenticating a request")
            return AuthResult.failure(Unauthenticated("Authentication is temporarily unavailable"))

        if user is None:
            return AuthResult.failure(Unauthenticated("User not found"))
        if suspended:
            return AuthResult.failure(AccountSuspended())

        if claims.get("scope") == PENDING_TWO_FACTOR_SCOPE:
            if not allow_pending:
                return AuthResult.failure(TwoFactorRequired())
            if not user.is_two_factor_enabled:
                return AuthResult.failure(Unauthenticated("Two-factor login is no longer pending"))
        return AuthResult.success(user, claims, token)

    def auth_status(self, auth: Optional[AuthResult]) -> dict:
        if auth is None or not auth.ok:
            return {"isAuthenticated": False, "user": None, "emailVerified": False, "requiresTwoFactor": False}
        return {
            "isAuthenticated": not auth.is_pending_two_factor,
            "user": user_summary(auth.user),
            "emailVerified": bool(auth.user.is_email_verified),
            "requiresTwoFactor": auth.is_pending_two_factor,
        }

    def prune_expired(self) -> dict:
        return self.revocation.prune_expired()
