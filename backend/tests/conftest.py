from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app.core.deps import get_current_user
from app.core.security import get_password_hash
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.enums import Role
from app.models.user import User

PASSWORD = "Correct-Horse-42"


@pytest.fixture()
def db():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture()
def password():
    return PASSWORD


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def _make(role: Role = Role.USER, **fields) -> User:
        counter["n"] += 1
        user = User(
            name=fields.pop("name", f"User {counter['n']}"),
            email=fields.pop("email", f"user{counter['n']}@example.com"),
            hashed_password=get_password_hash(PASSWORD),
            role=role,
            is_active=True,
            **fields,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture()
def user(make_user):
    return make_user(first_name="Asha", last_name="Rao")


@pytest.fixture()
def admin(make_user):
    return make_user(role=Role.ADMIN, name="Admin")


@pytest.fixture()
def acting(user):
    """Mutable holder for the user the API client authenticates as."""
    return {"user": user}


@pytest.fixture()
def client(db, acting):
    def override_get_db():
        try:
            yield db
        finally:
            pass

    def override_get_current_user():
        return acting["user"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    client_instance = TestClient(app)
    try:
        yield client_instance
    finally:
        client_instance.close()
        app.dependency_overrides.clear()
