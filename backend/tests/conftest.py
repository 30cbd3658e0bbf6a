"""
Shared fixtures: in-memory SQLite store, deterministic reference numbers and
an authenticated TestClient.
"""
import itertools
import os
from uuid import uuid4

# Must be set before quote_engine.database builds its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("APP_ENV", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from quote_engine.auth import get_current_user
from quote_engine.database import Base, get_db
from quote_engine.main import app
from quote_engine.models import db_models  # noqa: F401
from quote_engine.models.db_models import BridgeQuoteResultDB, QuoteResultDB, UserDB
from quote_engine.routers.quotes import get_quote_store
from quote_engine.services.quote_store import QuoteStore
from quote_engine.services.reference_numbers import ReferenceNumberIssuer


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def issuer(db):
    """Issuer backed by a counter: MFS000001, MFS000002, ..."""
    counter = itertools.count(1)
    return ReferenceNumberIssuer(db, generator=lambda: f"MFS{next(counter):06d}")


@pytest.fixture
def store(db, issuer):
    return QuoteStore(db, issuer=issuer)


@pytest.fixture
def fail_result_inserts(db):
    """Call the returned function to make every flush that adds result rows fail."""
    def reject_results(session, flush_context, instances):
        if any(isinstance(obj, (QuoteResultDB, BridgeQuoteResultDB)) for obj in session.new):
            raise OperationalError("INSERT INTO quote_results", {}, Exception("server closed the connection"))

    armed = []

    def arm():
        event.listen(db, "before_flush", reject_results)
        armed.append(reject_results)

    yield arm
    for listener in armed:
        event.remove(db, "before_flush", listener)


def _make_user(db, email: str, role: str) -> UserDB:
    user = UserDB(id=str(uuid4()), email=email, name=email.split("@")[0], role=role, is_active=True)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def broker(db):
    return _make_user(db, "broker@mfs.example", "user")


@pytest.fixture
def admin(db):
    return _make_user(db, "admin@mfs.example", "admin")


def _client_for(db, store, user) -> TestClient:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_quote_store] = lambda: store
    app.dependency_overrides[get_current_user] = lambda: user
    return TestClient(app)


@pytest.fixture
def client(db, store, broker):
    yield _client_for(db, store, broker)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_client(db, store, admin):
    yield _client_for(db, store, admin)
    app.dependency_overrides.clear()
