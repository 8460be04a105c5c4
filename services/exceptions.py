"""
Error taxonomy of the auth core.

Every failure a caller can see is an AuthError carrying a stable machine code and
HTTP status; api/errors.py turns it into the {error, message, status} envelope.
Storage and signing exceptions are translated before they leave the services.
"""
from __future__ import annotations


class AuthError(Exception):
    code = "AUTH_ERROR"
    status = 400
    default_message = "Authentication error"

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(AuthError):
    code = "VALIDATION_ERROR"
    status = 422
    default_message = "Invalid input"


class Conflict(AuthError):
    code = "CONFLICT"
    status = 409
    default_message = "Resource already exists"


class InvalidCredentials(AuthError):
    code = "INVALID_CREDENTIALS"
    status = 401
    default_message = "Username or password is incorrect"


class Unauthenticated(AuthError):
    code = "UNAUTHENTICATED"
    status = 401
    default_message = "Authentication required"


class AccountNotVerified(AuthError):
    code = "ACCOUNT_NOT_VERIFIED"
    status = 403
    default_message = "Please verify your email address. A new verification email has been sent."


class AccountSuspended(AuthError):
    code = "ACCOUNT_SUSPENDED"
    status = 403
    default_message = "This account has been suspended"


class AccountLocked(AuthError):
    code = "ACCOUNT_LOCKED"
    status = 423
    default_message = "Account temporarily locked after repeated failed logins"


class TokenInvalid(AuthError):
    code = "TOKEN_INVALID"
    status = 401
    default_message = "Invalid or revoked token"


class TokenExpired(AuthError):
    code = "TOKEN_EXPIRED"
    status = 401
    default_message = "Token has expired"


class TokenAlreadyUsed(AuthError):
    code = "TOKEN_ALREADY_USED"
    status = 400
    default_message = "This link has already been used"


class TwoFactorRequired(AuthError):
    code = "TWO_FACTOR_REQUIRED"
    status = 401
    default_message = "Two-factor authentication must be completed first"


class TwoFactorInvalidCode(AuthError):
    code = "TWO_FACTOR_INVALID_CODE"
    status = 400
    default_message = "Invalid verification code"


class OAuthConflict(AuthError):
    code = "OAUTH_CONFLICT"
    status = 409
    default_message = (
        "An account with this email already exists. "
        "Log in with your password to link this provider."
    )


class OAuthProviderError(AuthError):
    code = "OAUTH_ERROR"
    status = 400
    default_message = "Failed to authenticate with the identity provider"
