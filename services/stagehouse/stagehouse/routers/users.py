"""
User endpoints: the caller's own profile and admin role management.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import auth, crud, schemas
from ..auth import Identity
from ..database import get_db
from ..exceptions import NotFound

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=schemas.User)
def get_me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """
    The caller's user record.

    Raises:
        NotFound: 404 if the caller never synced (POST /users/me)
    """
    subject = auth.require_authenticated(identity)
    db_user = crud.get_user_by_subject(db, subject)
    if db_user is None:
        raise NotFound("User not found")
    return db_user


@router.post("/me", response_model=schemas.User)
def sync_me(
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Create or refresh the caller's user record from their token claims."""
    return crud.sync_user(db, identity)


@router.put("/{subject}/role", response_model=schemas.User)
def set_role(
    subject: str,
    update: schemas.RoleUpdate,
    db: Session = Depends(get_db),
    identity: Identity = Depends(auth.get_identity),
):
    """Change a user's role (admin only)."""
    return crud.set_user_role(db, identity, subject, update.role)
