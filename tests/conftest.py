import itertools
import os
from datetime import timedelta

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SESSION_SECRET", "test-secret")

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from db import build_engine, create_db_and_tables, get_session
from main import app
from models import Donation, DonationCategory, Role, User, utcnow
from routers.auth import create_session_token, hash_password

PASSWORD = "secret123"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def client(engine):
    def session_override():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = session_override
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    def _make(role, username=None):
        n = next(counter)
        role = Role(role)
        username = username or f"{role.value}{n}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            first_name="Test",
            last_name=f"User{n}",
            role=role,
            password_hash=hash_password(PASSWORD),
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_donation(session):
    def _make(donor, **overrides):
        fields = dict(
            donor_id=donor.id,
            title="Bread",
            description="Day-old loaves",
            category=DonationCategory.FOOD,
            quantity=12,
            unit="loaves",
            expiry_date=utcnow() + timedelta(hours=1),
            pickup_address="1 Main St",
        )
        fields.update(overrides)
        donation = Donation(**fields)
        session.add(donation)
        session.commit()
        session.refresh(donation)
        return donation

    return _make


@pytest.fixture
def headers_for():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_session_token(user.id)}"}

    return _headers
