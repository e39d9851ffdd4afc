import os
import itertools
from datetime import datetime, timedelta
from decimal import Decimal

# Configure before the service modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["WEBHOOK_URLS"] = ""
os.environ["LOG_DIR"] = ""
os.environ["STRICT_LEDGER"] = "1"

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from stagehouse import config, models
from stagehouse.auth import Identity
from stagehouse.database import SessionLocal, engine
from stagehouse.main import app


@pytest.fixture(autouse=True)
def reset_database():
    models.Base.metadata.drop_all(bind=engine)
    models.Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


def make_token(subject: str, **claims) -> str:
    payload = {"sub": subject, "email": f"{subject}@example.com", **claims}
    return jwt.encode(payload, config.SECRET_KEY, algorithm=config.ALGORITHM)


def auth_header(identity: Identity) -> dict:
    return {"Authorization": f"Bearer {make_token(identity.subject)}"}


def _user(db, subject: str, role: str) -> Identity:
    db.add(models.User(subject=subject, email=f"{subject}@example.com", role=role))
    db.commit()
    return Identity(authenticated=True, subject=subject, email=f"{subject}@example.com")


@pytest.fixture
def admin(db) -> Identity:
    return _user(db, "admin-1", "admin")


@pytest.fixture
def owner(db) -> Identity:
    return _user(db, "owner-1", "customer")


@pytest.fixture
def stranger(db) -> Identity:
    return _user(db, "stranger-1", "customer")


@pytest.fixture
def make_item(db):
    """Insert catalog items directly; o_id counts up from 1 unless given."""
    o_ids = itertools.count(1)

    def _make(**fields) -> models.InventoryItem:
        values = {
            "o_id": next(o_ids),
            "name": "Velvet sofa",
            "category": "Seating",
            "count": 5,
            "in_use": 0,
            "price": Decimal("40.00"),
            "image_path": "https://img.example.com/sofa.jpg",
            "width": 800,
            "height": 600,
        }
        values.update(fields)
        item = models.InventoryItem(**values)
        db.add(item)
        db.commit()
        db.refresh(item)
        return item

    return _make


@pytest.fixture
def make_project(db):
    """Insert projects directly; each one is a minute newer than the last."""
    clock = itertools.count()
    base = datetime(2024, 1, 1, 9, 0, 0)

    def _make(identity: Identity, **fields) -> models.Project:
        created = base + timedelta(minutes=next(clock))
        values = {
            "owner_id": identity.subject,
            "name": "Maple Street listing",
            "display_order": db.query(models.Project).count() + 1,
            "created_at": created,
            "updated_at": created,
        }
        values.update(fields)
        project = models.Project(**values)
        db.add(project)
        db.commit()
        db.refresh(project)
        return project

    return _make
