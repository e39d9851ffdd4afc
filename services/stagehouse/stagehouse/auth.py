"""
Authentication and authorization utilities for the Stagehouse service.

Tokens are issued by an external identity provider; this module only
validates them into an Identity. Role and ownership checks for every core
operation go through require_admin / require_owner_or_admin, which look the
caller's role up in the users table.
"""
import logging
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy.orm import Session

from . import config, models
from .exceptions import Unauthenticated, Unauthorized

logger = logging.getLogger(__name__)

# Missing credentials are not an error here: public reads accept anonymous callers
security = HTTPBearer(auto_error=False)


class Identity(BaseModel):
    """Resolved caller identity."""
    authenticated: bool
    subject: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    token: Optional[str] = None


ANONYMOUS = Identity(authenticated=False)


def decode_token(token: str) -> Identity:
    """
    Decode and validate a bearer token.

    Raises:
        Unauthenticated: if the token is invalid or carries no subject
    """
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT validation error: {e}")
        raise Unauthenticated("Could not validate credentials")

    subject = payload.get("sub")
    if not subject:
        logger.warning("No 'sub' claim in token")
        raise Unauthenticated("Could not validate credentials")

    return Identity(
        authenticated=True,
        subject=str(subject),
        email=payload.get("email"),
        name=payload.get("name"),
        token=token,
    )


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Identity:
    """
    FastAPI dependency resolving the caller from the Authorization header.

    Returns:
        The caller's identity, or an unauthenticated one when no token was sent
    """
    if credentials is None:
        return ANONYMOUS
    return decode_token(credentials.credentials)


def role_of(db: Session, subject: str) -> Optional[str]:
    """Look up the role of a subject, None if the user never synced."""
    user = db.query(models.User).filter(models.User.subject == subject).first()
    return user.role if user else None


def require_authenticated(identity: Identity) -> str:
    """
    Returns:
        The caller's subject

    Raises:
        Unauthenticated: if there is no resolved identity
    """
    if not identity.authenticated or not identity.subject:
        raise Unauthenticated()
    return identity.subject


def require_admin(db: Session, identity: Identity) -> str:
    """
    Require the caller to hold the admin role.

    Raises:
        Unauthenticated: if there is no resolved identity
        Unauthorized: if the caller is not an admin
    """
    subject = require_authenticated(identity)
    if role_of(db, subject) != "admin":
        raise Unauthorized("Admin privileges required")
    return subject


def require_owner_or_admin(db: Session, identity: Identity, owner_id: str) -> str:
    """
    Require the caller to own the resource or hold the admin role.

    Raises:
        Unauthenticated: if there is no resolved identity
        Unauthorized: if the caller is neither owner nor admin
    """
    subject = require_authenticated(identity)
    if subject == owner_id:
        return subject
    if role_of(db, subject) != "admin":
        raise Unauthorized()
    return subject
