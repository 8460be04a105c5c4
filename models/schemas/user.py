from marshmallow import Schema, fields, pre_load, validates, ValidationError, EXCLUDE, validate


def _norm_email(v):
    return v.strip().lower() if isinstance(v, str) else v


class _Body(Schema):
    class Meta:
        unknown = EXCLUDE


class UserCreateSchema(_Body):
    username = fields.String(required=True, validate=validate.Length(min=3, max=64))
    email = fields.Email(required=True)
    password = fields.String(required=True, load_only=True)
    phone = fields.String(allow_none=True, validate=validate.Length(max=32))

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data["email"] = _norm_email(data["email"])
        return data

    @validates("username")
    def validate_username(self, value, **kwargs):
        if not value.replace("_", "").replace(".", "").replace("-", "").isalnum():
            raise ValidationError("Username may only contain letters, numbers, '.', '_' and '-'.")


class UserLoginSchema(_Body):
    # username or email
    username = fields.String(required=True)
    password = fields.String(required=True, load_only=True)

    @pre_load
    def accept_email(self, data, **kwargs):
        if isinstance(data, dict) and "username" not in data and "email" in data:
            data["username"] = data["email"]
        return data


class RefreshTokenSchema(_Body):
    token = fields.String(required=True)

    @pre_load
    def accept_aliases(self, data, **kwargs):
        if isinstance(data, dict) and "token" not in data:
            value = data.get("refreshToken") or data.get("refresh_token")
            if value is not None:
                data["token"] = value
        return data


class LogoutSchema(RefreshTokenSchema):
    token = fields.String(load_default=None)


class EmailSchema(_Body):
    email = fields.Email(required=True)

    @pre_load
    def normalize(self, data, **kwargs):
        if isinstance(data, dict) and "email" in data:
            data["email"] = _norm_email(data["email"])
        return data


class ResetPasswordSchema(_Body):
    token = fields.String(required=True)
    password = fields.String(required=True, load_only=True)


class ChangePasswordSchema(_Body):
    current_password = fields.String(required=True, load_only=True, data_key="currentPassword")
    new_password = fields.String(required=True, load_only=True, data_key="newPassword")


class TwoFactorCodeSchema(_Body):
    token = fields.String(required=True, validate=validate.Length(min=1, max=32))
    use_backup_code = fields.Boolean(load_default=None, data_key="useBackupCode")


class OAuthCallbackSchema(_Body):
    code = fields.String(required=True)
    redirect_uri = fields.String(required=True, data_key="redirectUri")
