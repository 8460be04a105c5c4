"""Request helpers shared by the blueprints."""
from __future__ import annotations

from flask import current_app, request

from services.settings import RequestMeta


def get_auth():
    """The AuthOrchestrator built by create_app()."""
    return current_app.extensions["auth"]


def extract_bearer_token() -> str | None:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    token = auth.split(" ", 1)[1].strip()
    return token or None


def request_meta() -> RequestMeta:
    forwarded = request.headers.get("X-Forwarded-For", "")
    ip = forwarded.split(",")[0].strip() if forwarded else request.remote_addr
    return RequestMeta(ip_address=ip, user_agent=request.headers.get("User-Agent"))
