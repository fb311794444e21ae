from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from printdesk.core.config import get_settings
from printdesk.core.errors import AuthenticationError


security = HTTPBasic(auto_error=False)


def require_basic_auth(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
    settings = get_settings()
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required", headers={"WWW-Authenticate": "Basic"})

    valid_user = secrets.compare_digest(credentials.username, settings.basic_auth_username)
    valid_pass = secrets.compare_digest(credentials.password, settings.basic_auth_password)
    if not (valid_user and valid_pass):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(raw_body: bytes, signature_header: str | None, secret: str | None) -> None:
    """
    Check the base64 HMAC-SHA256 of the raw, unparsed request body.

    Raises AuthenticationError for a missing header, a missing secret or a mismatch.
    """
    if not signature_header or not signature_header.strip():
        raise AuthenticationError("Missing webhook signature")
    if not secret:
        raise AuthenticationError("No webhook secret configured")

    expected = compute_webhook_signature(raw_body, secret)
    if not hmac.compare_digest(expected.encode("ascii"), signature_header.strip().encode("utf-8")):
        raise AuthenticationError("Invalid webhook signature")
