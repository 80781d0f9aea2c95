"""JWT verification for bearer-style credentials.

Tokens are RS256-signed JWTs carrying at least an ``exp`` claim. Verification
is a pure function of the credential, the public key and the current time:
nothing is cached and there is no revocation list.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

from core.exceptions import ConfigurationError, UnauthorizedError

DEFAULT_ALGORITHMS: tuple[str, ...] = ("RS256",)

# Time-based claims are checked against the caller's clock below; PyJWT would
# otherwise consult the wall clock itself.
_DECODE_OPTIONS = {
    "require": ["exp"],
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


def load_public_key(path: Path) -> RSAPublicKey:
    """Read an RSA public key in PEM format.

    A key that cannot be read must never be mistaken for "no key", which
    would leave the service open, so every failure is a configuration error.
    """
    try:
        pem_data = Path(path).read_bytes()
    except OSError as exc:
        raise ConfigurationError(
            f"Failed to read public key PEM from {path}", {"path": str(path), "error": str(exc)}
        ) from exc
    try:
        key = serialization.load_pem_public_key(pem_data)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError(
            "Failed to decode public key", {"path": str(path), "error": str(exc)}
        ) from exc
    if not isinstance(key, RSAPublicKey):
        raise ConfigurationError("Public key is not an RSA key", {"path": str(path)})
    return key


def _numeric_claim(claims: dict[str, Any], name: str) -> float | None:
    value = claims.get(name)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise UnauthorizedError(f"Claim '{name}' is not a timestamp", {"reason": "malformed"})
    return float(value)


def verify_token(
    credential: str,
    public_key: RSAPublicKey,
    now: float,
    *,
    algorithms: Sequence[str] = DEFAULT_ALGORITHMS,
) -> dict[str, Any]:
    """Verify ``credential`` and return its claims.

    Raises:
        UnauthorizedError: on malformed encoding, an algorithm outside
            ``algorithms``, a bad signature, a missing ``exp`` claim,
            ``now >= exp`` or ``now < nbf``.
    """
    try:
        header = jwt.get_unverified_header(credential)
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Malformed token", {"reason": str(exc)}) from exc

    algorithm = header.get("alg")
    if algorithm not in algorithms:
        raise UnauthorizedError("Unsupported token algorithm", {"reason": f"alg={algorithm}"})

    try:
        claims = jwt.decode(
            credential,
            key=public_key,
            algorithms=list(algorithms),
            options=_DECODE_OPTIONS,
        )
    except jwt.PyJWTError as exc:
        raise UnauthorizedError("Invalid token", {"reason": str(exc)}) from exc

    expiry = _numeric_claim(claims, "exp")
    if expiry is None:
        raise UnauthorizedError("Token has no expiry", {"reason": "missing exp"})
    if now >= expiry:
        raise UnauthorizedError("Token has expired", {"reason": "expired"})

    not_before = _numeric_claim(claims, "nbf")
    if not_before is not None and now < not_before:
        raise UnauthorizedError("Token is not yet valid", {"reason": "nbf"})

    return claims


__all__ = ["DEFAULT_ALGORITHMS", "load_public_key", "verify_token"]
