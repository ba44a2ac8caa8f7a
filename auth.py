"""
Operator authentication: HS256 bearer tokens and the route guard.

Tokens use the JWT compact form (header.payload.signature, base64url without
padding) signed with HMAC-SHA256, so any JWT library can read them.
Only operator routes are guarded; devices are trusted implicitly.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

TOKEN_HEADER = {"alg": "HS256", "typ": "JWT"}


class TokenError(Exception):
    """Token is malformed, expired, or signed with a different key."""


# -------- Token encoding --------

def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


def _sign(signing_input: str, secret: str) -> str:
    mac = hmac.new(secret.encode("utf-8"), signing_input.encode("ascii"), hashlib.sha256)
    return _b64encode(mac.digest())


def issue_token(username: str, secret: str, expires_in: int, now: Optional[float] = None) -> str:
    """Sign a token for `username` that expires `expires_in` seconds from now."""
    issued_at = int(now if now is not None else time.time())
    claims = {"username": username, "iat": issued_at, "exp": issued_at + int(expires_in)}

    header_part = _b64encode(json.dumps(TOKEN_HEADER, separators=(",", ":")).encode("utf-8"))
    payload_part = _b64encode(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_part}.{payload_part}"
    return f"{signing_input}.{_sign(signing_input, secret)}"


def verify_token(token: str, secret: str, now: Optional[float] = None) -> Dict[str, Any]:
    """Return the token claims or raise TokenError."""
    parts = token.split(".")
    if len(parts) != 3:
        raise TokenError("malformed token")
    header_part, payload_part, signature = parts

    try:
        header = json.loads(_b64decode(header_part))
        claims = json.loads(_b64decode(payload_part))
    except (ValueError, UnicodeDecodeError) as e:
        raise TokenError(f"malformed token: {e}") from e

    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise TokenError("unsupported token algorithm")
    if not isinstance(claims, dict):
        raise TokenError("malformed token claims")

    expected = _sign(f"{header_part}.{payload_part}", secret)
    if not hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "replace")):
        raise TokenError("signature verification failed")

    exp = claims.get("exp")
    if not isinstance(exp, (int, float)) or isinstance(exp, bool):
        raise TokenError("token has no expiry")
    current = now if now is not None else time.time()
    if current >= exp:
        raise TokenError("token expired")
    return claims


# -------- Request authorization --------

@dataclass(frozen=True)
class AuthResult:
    authorized: bool
    identity: Optional[Dict[str, Any]] = None
    status: int = 200
    error: Optional[str] = None


def authorize(authorization_header: Optional[str], secret: str, now: Optional[float] = None) -> AuthResult:
    """Check an Authorization header.

    401 when the header or the token is missing, 403 when the token does
    not verify.
    """
    if not authorization_header:
        return AuthResult(False, status=401, error="Authorization header missing")

    parts = authorization_header.split()
    token = parts[1] if len(parts) > 1 else None
    if not token:
        return AuthResult(False, status=401, error="Token missing")

    try:
        claims = verify_token(token, secret, now=now)
    except TokenError as e:
        logger.info("[AUTH] rejected token: %s", e)
        return AuthResult(False, status=403, error="Invalid token")
    return AuthResult(True, identity=claims)


def check_credentials(username: Any, password: Any, settings) -> bool:
    """Compare login credentials against the configured operator account."""
    if not settings.login_id or not settings.login_pw:
        return False
    if not isinstance(username, str) or not isinstance(password, str):
        return False
    user_ok = hmac.compare_digest(username.encode("utf-8"), settings.login_id.encode("utf-8"))
    pass_ok = hmac.compare_digest(password.encode("utf-8"), settings.login_pw.encode("utf-8"))
    return user_ok and pass_ok


def require_token(view):
    """Reject the request before the view runs unless it carries a valid token."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        settings = current_app.config["POWER_CONTROL_SETTINGS"]
        if not settings.auth_enabled:
            return view(*args, **kwargs)

        result = authorize(request.headers.get("Authorization"), settings.jwt_secret)
        if not result.authorized:
            return jsonify({"error": result.error}), result.status
        g.user = result.identity
        return view(*args, **kwargs)
    return wrapper
