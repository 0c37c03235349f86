from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from . import config

logger = logging.getLogger(__name__)


class SupabaseAuthError(RuntimeError):
    def __init__(self, message: str, status: int = 400):
        self.status = status
        super().__init__(message)


def supabase_json_request(
    method: str,
    path: str,
    payload: dict[str, Any] | None = None,
    access_token: str | None = None,
    params: dict[str, Any] | None = None,
    service: bool = False,
) -> tuple[Any, int]:
    api_key = config.SUPABASE_SERVICE_ROLE_KEY if service else config.SUPABASE_ANON_KEY
    headers = {"apikey": api_key, "Content-Type": "application/json"}
    bearer = access_token or (api_key if service else None)
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"

    url = f"{config.required_env('SUPABASE_URL').rstrip('/')}{path}"
    try:
        response = requests.request(
            method,
            url,
            json=payload,
            params=params,
            headers=headers,
            timeout=config.SUPABASE_TIMEOUT_SECONDS,
        )
    except requests.RequestException:
        logger.exception("Supabase request failed: %s %s", method, path)
        return {"error": "Supabase is unavailable"}, 502

    try:
        body: Any = response.json()
    except ValueError:
        body = {"raw": response.text}

    if response.status_code >= 400:
        return {
            "error": "Supabase returned an error",
            "status": response.status_code,
            "response": body,
        }, response.status_code

    return body, response.status_code


def _error_message(body: Any) -> str:
    if isinstance(body, dict):
        detail = body.get("response") if isinstance(body.get("response"), dict) else body
        for key in ("error_description", "msg", "message", "error"):
            if detail.get(key):
                return str(detail[key])
    return "Error de autenticación"


def _checked(body: Any, status: int) -> Any:
    if status >= 400:
        raise SupabaseAuthError(_error_message(body), status)
    return body


def sign_in_with_password(email: str, password: str) -> dict[str, Any]:
    body, status = supabase_json_request(
        "POST",
        "/auth/v1/token",
        payload={"email": email, "password": password},
        params={"grant_type": "password"},
    )
    return _checked(body, status)


def sign_in_with_otp(email: str, redirect_to: str) -> None:
    body, status = supabase_json_request(
        "POST",
        "/auth/v1/otp",
        payload={"email": email, "create_user": False},
        params={"redirect_to": redirect_to},
    )
    _checked(body, status)


def verify_otp(token_hash: str, otp_type: str = "magiclink") -> dict[str, Any]:
    body, status = supabase_json_request(
        "POST",
        "/auth/v1/verify",
        payload={"type": otp_type, "token_hash": token_hash},
    )
    return _checked(body, status)


def refresh_session(refresh_token: str) -> dict[str, Any]:
    body, status = supabase_json_request(
        "POST",
        "/auth/v1/token",
        payload={"refresh_token": refresh_token},
        params={"grant_type": "refresh_token"},
    )
    return _checked(body, status)


def get_user(access_token: str) -> dict[str, Any]:
    body, status = supabase_json_request("GET", "/auth/v1/user", access_token=access_token)
    return _checked(body, status)


def sign_out(access_token: str) -> None:
    body, status = supabase_json_request("POST", "/auth/v1/logout", access_token=access_token)
    if status >= 400:
        # The session is dropped locally either way.
        logger.warning("Supabase logout returned %s: %s", status, _error_message(body))


def invite_user_by_email(email: str, data: dict[str, Any], redirect_to: str) -> dict[str, Any]:
    body, status = supabase_json_request(
        "POST",
        "/auth/v1/invite",
        payload={"email": email, "data": data},
        params={"redirect_to": redirect_to},
        service=True,
    )
    return _checked(body, status)


def public_object_url(bucket: str, path: str) -> str:
    return f"{config.SUPABASE_URL}/storage/v1/object/public/{quote(bucket)}/{quote(path.lstrip('/'))}"


def resolve_media_url(value: str | None, bucket: str | None = None) -> str:
    """Absolute URLs pass through; bare object paths map to the public bucket."""
    if not value:
        return ""
    if value.startswith(("http://", "https://")):
        return value
    return public_object_url(bucket or config.STORAGE_BUCKET, value)
