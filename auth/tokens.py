"""
auth/tokens.py -- Token Codec, password hashing, and opaque-secret utilities.

Security design decisions:
  JWT: python-jose with HS256. TokenCodec is built from an injected Settings
       instance and signs the claim set id, username, role, tenant_id,
       fingerprint?, sessionId?, lineageId?, activeRole?, isRoleSwitched?, iat, exp.
       decode() raises TokenInvalidOrExpired on any failure; the request
       layer turns that into a 403 or a login redirect.

  Passwords: bcrypt directly (no passlib wrapper). The cost factor comes from
       Settings.bcrypt_rounds. dummy_hash() enables timing equalization in
       the login path so response time does not reveal whether an identifier
       exists.

  Refresh secrets: secrets.token_urlsafe(48) (384 bits, 64 chars -- under
       bcrypt's 72-byte input limit). The ledger keeps only the bcrypt hash,
       so a leaked ledger table cannot be replayed.

  Session correlators: secrets.token_urlsafe(32). Never derived from user
       data.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

import bcrypt
from jose import JWTError, jwt

from auth.errors import TokenInvalidOrExpired
from auth.models import IdentityContext, User
from core.config import Settings

logger = logging.getLogger("tenantauth.tokens")

_ALGORITHM = "HS256"
COOKIE_NAME = "token"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt)
# ---------------------------------------------------------------------------


_BCRYPT_MAX_BYTES = 72


def _bcrypt_input(plain: str) -> bytes:
    # bcrypt only reads the first 72 bytes and bcrypt>=5 rejects longer input.
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a bcrypt hash of the given plaintext."""
    return bcrypt.hashpw(_bcrypt_input(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash.

    A malformed stored hash is a data error, not a mismatch, so ValueError
    from bcrypt propagates to the facade guard.
    """
    return bcrypt.checkpw(_bcrypt_input(plain), hashed.encode("utf-8"))


@lru_cache(maxsize=4)
def dummy_hash(rounds: int) -> str:
    """Return a fixed bcrypt hash at the given cost, computed once per cost.

    Verified against whenever the identity does not exist so both branches
    of a failed login pay for one bcrypt comparison.
    """
    return hash_password("tenantauth_timing_dummy", rounds)


# ---------------------------------------------------------------------------
# Opaque secrets
# ---------------------------------------------------------------------------


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def new_refresh_secret() -> str:
    return secrets.token_urlsafe(48)


def new_lineage_id() -> str:
    return secrets.token_urlsafe(24)


# ---------------------------------------------------------------------------
# Token Codec
# ---------------------------------------------------------------------------


def _as_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Coerce an integral claim (7, 7.0, "7", "7.0") to int.

    Returns default when the claim is absent, not numeric, or not a whole number.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        return default
    if not number.is_integer():
        return default
    return int(number)


class TokenCodec:
    """Sign and verify compact HS256 Session Tokens.

    Usage:
        codec = TokenCodec(settings)
        token = codec.issue(user, session_id=new_session_id())
        ctx = codec.verify(token)
    """

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.jwt_secret
        self._lifetime = settings.access_token_expire_seconds

    def issue(
        self,
        user: User,
        session_id: Optional[str] = None,
        lineage_id: Optional[str] = None,
        fingerprint: Optional[str] = None,
        active_role: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> str:
        """Encode a Session Token for user.

        active_role=None issues a plain token (legal role only, no
        impersonation claims). Anything else adds activeRole and
        isRoleSwitched, where isRoleSwitched is derived here rather than
        taken from the caller so the pair can never disagree.
        """
        issued = int((now or datetime.now(timezone.utc)).timestamp())
        claims: dict[str, Any] = {
            "id": user.id,
            "username": user.username,
            "role": user.role,
            "tenant_id": user.tenant_id,
            "iat": issued,
            "exp": issued + self._lifetime,
        }
        if session_id:
            claims["sessionId"] = session_id
        if lineage_id:
            claims["lineageId"] = lineage_id
        if fingerprint:
            claims["fingerprint"] = fingerprint
        if active_role is not None:
            claims["activeRole"] = active_role
            claims["isRoleSwitched"] = active_role != user.role
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def decode(self, token: str, verify_exp: bool = True) -> dict[str, Any]:
        """Verify signature (and expiry unless verify_exp=False) and return raw claims."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": verify_exp},
            )
        except JWTError as exc:
            raise TokenInvalidOrExpired() from exc
        if _as_int(claims.get("id")) is None or not claims.get("role"):
            raise TokenInvalidOrExpired()
        return claims

    def verify(self, token: str) -> IdentityContext:
        return to_identity(self.decode(token))


def to_identity(claims: dict[str, Any]) -> IdentityContext:
    """Normalize raw claims into an IdentityContext.

    ids are coerced from int, whole-valued float or numeric string. activeRole defaults to the
    legal role, isRoleSwitched to False. A token without tenant_id is a
    degraded legacy token and gets tenant 0, which matches no tenant.
    """
    role = str(claims["role"])
    tenant_id = _as_int(claims.get("tenant_id"), 0)
    if tenant_id == 0:
        logger.warning("Token for user %s carries no tenant_id -- treating as legacy token", claims.get("id"))
    return IdentityContext(
        user_id=_as_int(claims["id"]),
        username=str(claims.get("username", "")),
        role=role,
        active_role=str(claims.get("activeRole") or role),
        is_role_switched=claims.get("isRoleSwitched") is True,
        tenant_id=tenant_id,
        session_id=claims.get("sessionId") or None,
        lineage_id=claims.get("lineageId") or None,
        fingerprint=claims.get("fingerprint") or None,
        issued_at=_as_int(claims.get("iat")),
        expires_at=_as_int(claims.get("exp")),
    )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, settings: Settings) -> None:
    """Write the Session Token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie.
    samesite="strict": never sent on cross-site requests; the cookie is only
        a fallback for same-site page loads.
    max_age: matches the token lifetime so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
        path="/",
    )


def clear_auth_cookie(response, settings: Settings) -> None:
    response.delete_cookie(
        COOKIE_NAME,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
    )
