"""
Authentication blueprint:
- POST /auth/register
- POST /auth/login
- POST /auth/refresh
- POST /auth/logout
- POST /auth/logout-all
- GET  /auth/verify-email?token=...
- POST /auth/resend-verification
- POST /auth/forgot-password
- POST /auth/reset-password
- POST /auth/change-password
- GET  /auth/status
- POST /auth/oauth/<provider>

Views only parse input and shape output; every decision is made by the
AuthOrchestrator (services/orchestrator.py). Tokens are delivered in the JSON body.
"""
from __future__ import annotations

from flask import Blueprint, request, jsonify

from models.schemas.user import (
    ChangePasswordSchema,
    EmailSchema,
    LogoutSchema,
    OAuthCallbackSchema,
    RefreshTokenSchema,
    ResetPasswordSchema,
    UserCreateSchema,
    UserLoginSchema,
)
from services.exceptions import ValidationError
from utils.decorators import jwt_optional, jwt_required
from utils.http import get_auth, request_meta

bp = Blueprint("auth", __name__, url_prefix="/auth")

user_create_schema = UserCreateSchema()
user_login_schema = UserLoginSchema()
refresh_schema = RefreshTokenSchema()
logout_schema = LogoutSchema()
email_schema = EmailSchema()
reset_password_schema = ResetPasswordSchema()
change_password_schema = ChangePasswordSchema()
oauth_schema = OAuthCallbackSchema()


def _body() -> dict:
    return request.get_json(silent=True) or {}


@bp.post("/register")
def register():
    """
    Register a new user; a verification email is sent.
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      - in: body
        name: body
        schema:
          type: object
          properties:
            username: { type: string }
            email: { type: string }
            password: { type: string }
            phone: { type: string }
    responses:
      201:
        description: Created
      409:
        description: Email or username taken
      422:
        description: Validation error
    """
    data = user_create_schema.load(_body())
    return jsonify(get_auth().register(data, request_meta())), 201


@bp.post("/login")
def login():
    """
    Login: returns accessToken and refreshToken, or a 2FA challenge
    ---
    tags:
      - Auth
    consumes:
      - application/json
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             username: { type: string, description: username or email }
             password: { type: string }
    responses:
      200:
        description: Tokens, or requiresTwoFactor with tempAccessToken
      401:
        description: Invalid credentials
      403:
        description: Email not verified or account suspended
      423:
        description: Account locked
    """
    data = user_login_schema.load(_body())
    return jsonify(get_auth().login(data["username"], data["password"], request_meta())), 200


@bp.post("/refresh")
def refresh():
    """
    Exchange a refresh token for a new access/refresh pair (rotation)
    ---
    tags:
      - Auth
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
    responses:
      200:
        description: New token pair
      401:
        description: Invalid, expired or already used refresh token
    """
    data = refresh_schema.load(_body())
    return jsonify(get_auth().refresh(data["token"], request_meta())), 200


@bp.post("/logout")
@jwt_optional()
def logout(auth=None):
    """
    Logout: revokes the refresh token and blacklists the bearer access token
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string, description: refresh token }
    responses:
      200:
        description: Logged out
    """
    data = logout_schema.load(_body())
    if not data.get("token") and (auth is None or not auth.ok):
        raise ValidationError("Refresh token is required")
    return jsonify(get_auth().logout(data.get("token"), auth, request_meta())), 200


@bp.post("/logout-all")
@jwt_required()
def logout_all(auth):
    """
    Revoke every refresh token of the current user
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Logged out everywhere
      401:
        description: Unauthorized
    """
    return jsonify(get_auth().logout_all(auth, request_meta())), 200


@bp.get("/verify-email")
def verify_email():
    """
    Verify an email address with the mailed token
    ---
    tags:
      - Auth
    parameters:
      - in: query
        name: token
        type: string
        required: true
    responses:
      200:
        description: Verified
      400:
        description: Token already used
      401:
        description: Invalid or expired token
    """
    token = request.args.get("token")
    if not token:
        raise ValidationError("Verification token is required")
    return jsonify(get_auth().verify_email(token)), 200


@bp.post("/resend-verification")
@jwt_required()
def resend_verification(auth):
    """
    Send a fresh verification email
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    responses:
      200:
        description: Sent
      422:
        description: Already verified
    """
    return jsonify(get_auth().resend_verification(auth.user, request_meta())), 200


@bp.post("/forgot-password")
def forgot_password():
    """
    Request a password reset link (same answer for unknown emails)
    ---
    tags:
      - Auth
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             email: { type: string }
    responses:
      200:
        description: Accepted
    """
    data = email_schema.load(_body())
    return jsonify(get_auth().request_password_reset(data["email"], request_meta())), 200


@bp.post("/reset-password")
def reset_password():
    """
    Set a new password using a mailed reset token
    ---
    tags:
      - Auth
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
             password: { type: string }
    responses:
      200:
        description: Password reset
      400:
        description: Token already used
      401:
        description: Invalid or expired token
    """
    data = reset_password_schema.load(_body())
    return jsonify(get_auth().reset_password(data["token"], data["password"], request_meta())), 200


@bp.post("/change-password")
@jwt_required()
def change_password(auth):
    """
    Change password (requires the current one)
    ---
    tags:
      - Auth
    security:
      - Bearer: []
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             currentPassword: { type: string }
             newPassword: { type: string }
    responses:
      200:
        description: Changed
      401:
        description: Current password incorrect
    """
    data = change_password_schema.load(_body())
    result = get_auth().change_password(auth.user, data["current_password"], data["new_password"], request_meta())
    return jsonify(result), 200


@bp.get("/status")
@jwt_optional(allow_pending=True)
def auth_status(auth=None):
    """
    Whether the bearer token authenticates a user
    ---
    tags:
      - Auth
    responses:
      200:
        description: Status
    """
    return jsonify(get_auth().auth_status(auth)), 200


@bp.post("/oauth/<provider>")
def oauth_login(provider):
    """
    Login or sign up through an OAuth provider (google, facebook)
    ---
    tags:
      - Auth
    parameters:
      - in: path
        name: provider
        type: string
        required: true
      -  in: body
         name: body
         schema:
           type: object
           properties:
             code: { type: string }
             redirectUri: { type: string }
    responses:
      200:
        description: Tokens, or a 2FA challenge
      409:
        description: Email belongs to a password account
    """
    data = oauth_schema.load(_body())
    result = get_auth().oauth_login(provider.lower(), data["code"], data["redirect_uri"], request_meta())
    return jsonify(result), 200
