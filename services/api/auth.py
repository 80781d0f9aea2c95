"""HTTP Basic Auth carrying a JWT in the password field.

The username is ignored on purpose: existing clients (``curl -u :$TOKEN``,
netrc ``password`` entries) only fill in the password.
"""

from __future__ import annotations

import binascii
import time
from base64 import b64decode
from typing import Any

from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param

from core.auth.tokens import verify_token
from core.exceptions import UnauthorizedError


def basic_auth_password(authorization: str | None) -> str:
    """Extract the password from a ``Basic`` Authorization header value.

    Only the password is decoded, so any username bytes are accepted.
    """
    scheme, param = get_authorization_scheme_param(authorization)
    if not authorization or not param:
        raise UnauthorizedError("Missing Authorization header")
    if scheme.lower() != "basic":
        raise UnauthorizedError("Unsupported authorization scheme", {"reason": "scheme"})
    try:
        payload = b64decode(param, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise UnauthorizedError("Malformed Basic credentials", {"reason": "encoding"}) from exc

    _, separator, password = payload.partition(b":")
    if not separator:
        raise UnauthorizedError("Malformed Basic credentials", {"reason": "separator"})
    try:
        return password.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise UnauthorizedError("Malformed Basic credentials", {"reason": "encoding"}) from exc


def require_credential(request: Request) -> dict[str, Any]:
    password = basic_auth_password(request.headers.get("Authorization"))
    if not password:
        raise UnauthorizedError("Missing credential")
    return verify_token(
        password,
        request.app.state.public_key,
        time.time(),
        algorithms=request.app.state.settings.auth.algorithms,
    )


__all__ = ["basic_auth_password", "require_credential"]
