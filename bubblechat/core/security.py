"""
core/security.py
----------------
Credential Manager: issues, verifies and silently rotates bearer tokens.

Design decisions:
  - The JWT payload carries only the user's phone (plus iat / exp). No
    mutable claims, so a token can never go stale relative to the user row.
  - verify_token() is pure crypto with no DB round-trip; it is the hot path.
  - verify_and_refresh() falls back to the DB only when the token is
    *expired* with a valid signature. It re-confirms the user still exists,
    reconciles the device push token on file, and mints a replacement.
    Bad signatures and malformed tokens are never refreshed.
  - A device token that differs from the one on file is written over rather
    than rejected: app reinstalls and push-token churn are legitimate. The
    read-then-write is best effort and not transactionally guarded.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from bubblechat.core.config import settings
from bubblechat.core.logging import get_logger, preview
from bubblechat.models.user import User

logger = get_logger(__name__)

IDENTITY_CLAIM = "phone"


# ── Failures ──────────────────────────────────────────────────────────────────

class CredentialError(Exception):
    """Base class for token verification failures."""


class CredentialExpired(CredentialError):
    """Signature is valid but the token is past its exp claim."""


class CredentialInvalid(CredentialError):
    """Signature or claims are wrong; never recoverable."""


class CredentialMalformed(CredentialInvalid):
    """Not a decodable JWT at all."""


@dataclass
class AuthResult:
    phone: str
    token: str
    was_refreshed: bool = False
    new_token: Optional[str] = None
    push_token: Optional[str] = None


# ── Issue / verify ────────────────────────────────────────────────────────────

def issue_token(phone: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Mint a signed, time-bounded credential for the given identity.

    Args:
        phone: The user's primary key, stored in the 'phone' claim.
        expires_delta: Optional custom lifetime; defaults to settings value.
    """
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)
    )
    payload: Dict[str, Any] = {
        IDENTITY_CLAIM: phone,
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _identity_from(payload: Dict[str, Any]) -> str:
    phone = payload.get(IDENTITY_CLAIM)
    if not phone or not isinstance(phone, str):
        raise CredentialInvalid("No phone claim in token")
    return phone


def verify_token(token: str) -> str:
    """
    Verify signature and expiry and return the phone identity. No DB call.

    Raises:
        CredentialMalformed: token is not a decodable JWT.
        CredentialExpired:   signature valid, exp in the past.
        CredentialInvalid:   bad signature or missing identity claim.
    """
    if not token:
        raise CredentialMalformed("Empty token")
    try:
        jwt.get_unverified_header(token)
    except JWTError as exc:
        raise CredentialMalformed(str(exc)) from exc

    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
    except ExpiredSignatureError as exc:
        raise CredentialExpired(str(exc)) from exc
    except JWTError as exc:
        raise CredentialInvalid(str(exc)) from exc

    return _identity_from(payload)


# ── Verify with silent rotation ───────────────────────────────────────────────

async def verify_and_refresh(
    db: AsyncSession,
    token: str,
    device_token: Optional[str] = None,
) -> AuthResult:
    """
    Verify a token, transparently rotating it if it has merely expired.

    Raises:
        CredentialInvalid: for anything other than a clean expiry, or when
            the expired token's user no longer exists.
    """
    try:
        phone = verify_token(token)
        return AuthResult(phone=phone, token=token)
    except CredentialExpired:
        logger.info("Token expired, attempting refresh", token=preview(token))
    except CredentialError as exc:
        logger.warning("Token verification failed", error=str(exc))
        raise CredentialInvalid(str(exc)) from exc

    # Signature was already checked by jwt.decode before it looked at exp.
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise CredentialInvalid(str(exc)) from exc
    phone = _identity_from(claims)

    user = await db.get(User, phone)
    if user is None:
        logger.warning("Refresh refused: user not found", phone=phone)
        raise CredentialInvalid("User not found")

    push_token = await _reconcile_device_token(db, user, device_token)

    new_token = issue_token(phone)
    logger.info("Token refreshed", phone=phone, device_bound=bool(push_token))
    return AuthResult(
        phone=phone,
        token=new_token,
        was_refreshed=True,
        new_token=new_token,
        push_token=push_token,
    )


async def _reconcile_device_token(
    db: AsyncSession, user: User, device_token: Optional[str]
) -> Optional[str]:
    if not device_token:
        if user.push_token:
            logger.warning(
                "Refresh without device token for a device-bound user",
                phone=user.phone,
            )
        return user.push_token

    if user.push_token == device_token:
        return user.push_token

    logger.warning(
        "Device token changed during refresh, updating record",
        phone=user.phone,
        old=preview(user.push_token),
        new=preview(device_token),
    )
    try:
        await db.execute(
            update(User)
            .where(User.phone == user.phone)
            .values(push_token=device_token)
        )
        await db.commit()
    except Exception as exc:
        # Never block a refresh on this write
        await db.rollback()
        logger.error("Failed to update device token", phone=user.phone, error=str(exc))
        return user.push_token
    return device_token
