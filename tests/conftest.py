import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient

from submanager.db import get_db
from submanager.lifecycle import SubscriptionLifecycle
from submanager.models import Base
from submanager.security import PasswordHasher, TokenIssuer
from submanager.sessions import AuthSessionManager
from submanager.stores import SqlCredentialStore, SqlProductStore, SqlSubscriptionStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _fk_on(dbapi_conn, _):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def issuer():
    return TokenIssuer("test-secret", access_ttl_minutes=15, refresh_ttl_days=7)


@pytest.fixture
def hasher():
    return PasswordHasher()


@pytest.fixture
def auth(db, hasher, issuer):
    return AuthSessionManager(SqlCredentialStore(db), hasher, issuer)


@pytest.fixture
def products(db):
    return SqlProductStore(db)


@pytest.fixture
def lifecycle(db, products):
    return SubscriptionLifecycle(SqlSubscriptionStore(db), products)


@pytest.fixture
def alice(auth):
    return auth.signup("Alice", "alice@example.com", "s3cret-pass")


@pytest.fixture
def product(products):
    return products.create(name="Premium", price=29.99)


@pytest.fixture
def client(session_factory):
    from submanager.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
