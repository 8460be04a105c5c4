"""
Two-factor blueprint:
- POST /2fa/setup         start setup, returns secret + otpauth URL
- POST /2fa/verify-setup  confirm with a TOTP, returns backup codes once
- POST /2fa/verify-login  second login step, takes the tempAccessToken
- POST /2fa/disable       requires a current TOTP
"""
from __future__ import annotations

from flask import Blueprint, request, jsonify

from models.schemas.user import TwoFactorCodeSchema
from utils.decorators import jwt_required
from utils.http import get_auth, request_meta

bp = Blueprint("two_factor", __name__, url_prefix="/2fa")

code_schema = TwoFactorCodeSchema()


@bp.post("/setup")
@jwt_required()
def setup(auth):
    """
    Initiate 2FA setup
    ---
    tags:
      - Two-factor
    security:
      - Bearer: []
    responses:
      200:
        description: Secret and otpauth URL
      422:
        description: Already enabled
    """
    return jsonify(get_auth().two_factor_setup(auth.user)), 200


@bp.post("/verify-setup")
@jwt_required()
def verify_setup(auth):
    """
    Confirm 2FA setup with a code from the authenticator app
    ---
    tags:
      - Two-factor
    security:
      - Bearer: []
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
    responses:
      200:
        description: Enabled; backupCodes are shown only now
      400:
        description: Invalid code
    """
    data = code_schema.load(request.get_json(silent=True) or {})
    return jsonify(get_auth().two_factor_verify_setup(auth.user, data["token"])), 200


@bp.post("/verify-login")
@jwt_required(allow_pending=True)
def verify_login(auth):
    """
    Complete a 2FA login with a TOTP or a backup code
    ---
    tags:
      - Two-factor
    security:
      - Bearer: []
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
             useBackupCode: { type: boolean }
    responses:
      200:
        description: Full token pair
      400:
        description: Invalid code
    """
    data = code_schema.load(request.get_json(silent=True) or {})
    result = get_auth().two_factor_verify_login(auth, data["token"], data.get("use_backup_code"), request_meta())
    return jsonify(result), 200


@bp.post("/disable")
@jwt_required()
def disable(auth):
    """
    Disable 2FA (a current authenticator code is required)
    ---
    tags:
      - Two-factor
    security:
      - Bearer: []
    parameters:
      -  in: body
         name: body
         schema:
           type: object
           properties:
             token: { type: string }
    responses:
      200:
        description: Disabled
      400:
        description: Invalid code
    """
    data = code_schema.load(request.get_json(silent=True) or {})
    return jsonify(get_auth().two_factor_disable(auth.user, data["token"])), 200
