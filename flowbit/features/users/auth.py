"""
Password hashing and bearer token issuing/verification.

A token carries a snapshot of the principal's resolved permissions. Changing a
role does not affect tokens already issued; clients pick the change up on the
next login or ``/auth/refresh``.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from fastapi import HTTPException, status

from flowbit.core import config
from flowbit.features.permissions.evaluator import has_permission, has_all, has_any, is_admin
from flowbit.utils import get_logger


log = get_logger(__name__)

# bcrypt only looks at the first 72 bytes
_BCRYPT_MAX_BYTES = 72


def hash_password(password: str) -> str:
    """Hash password using bcrypt"""
    hashed = bcrypt.hashpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8")[:_BCRYPT_MAX_BYTES], password_hash.encode("utf-8"))
    except ValueError:
        log.error("Stored password hash is malformed")
        return False


@dataclass(frozen=True)
class PrincipalSession:
    """
    The resolved (user, organization, role, permissions) tuple.

    Handlers receive this object through dependency injection; it is never
    stored in module or request-global state.
    """
    user_id: str
    email: str
    organization_id: str
    organization_slug: str
    membership_id: str
    role_name: str
    permissions: tuple[str, ...] = field(default_factory=tuple)

    def can(self, permission: str) -> bool:
        return has_permission(self.permissions, permission)

    def can_all(self, permissions: list[str]) -> bool:
        return has_all(self.permissions, permissions)

    def can_any(self, permissions: list[str]) -> bool:
        return has_any(self.permissions, permissions)

    @property
    def is_admin(self) -> bool:
        return is_admin(self.permissions)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["permissions"] = list(self.permissions)
        return data


def issue_token(session: PrincipalSession, expires_in: timedelta | None = None) -> str:
    """Serialize a session into a signed JWT."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": session.user_id,
        "email": session.email,
        "org": session.organization_id,
        "org_slug": session.organization_slug,
        "mid": session.membership_id,
        "role": session.role_name,
        "permissions": list(session.permissions),
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=config.JWT_EXPIRES_MINUTES)),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> PrincipalSession:
    """
    Verify a bearer token and rebuild the session it carries.

    Raises:
        HTTPException: 401 if the token is expired, forged or malformed
    """
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "org", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    permissions = payload.get("permissions") or []
    if not isinstance(permissions, list):
        permissions = []

    return PrincipalSession(
        user_id=payload["sub"],
        email=payload.get("email", ""),
        organization_id=payload["org"],
        organization_slug=payload.get("org_slug", ""),
        membership_id=payload.get("mid", ""),
        role_name=payload.get("role", ""),
        permissions=tuple(str(p) for p in permissions),
    )
