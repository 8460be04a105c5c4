from __future__ import annotations
from functools import wraps

from utils.http import extract_bearer_token, get_auth


def jwt_required(allow_pending: bool = False):
    """
    Authenticate the bearer token and hand the AuthResult to the view as `auth`.
    Failures raise the result's error, rendered by the AuthError handler.
    allow_pending admits the short-lived token issued while 2FA is outstanding.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            result = get_auth().authenticate(extract_bearer_token(), allow_pending=allow_pending)
            if not result.ok:
                raise result.error
            return fn(*args, auth=result, **kwargs)

        return wrapper

    return decorator


def jwt_optional(allow_pending: bool = False):
    """Like jwt_required, but the view receives the AuthResult whatever its outcome."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            token = extract_bearer_token()
            result = get_auth().authenticate(token, allow_pending=allow_pending) if token else None
            return fn(*args, auth=result, **kwargs)

        return wrapper

    return decorator
