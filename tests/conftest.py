import os

# Cheap bcrypt cost for tests; must be set before paydriver is imported.
os.environ.setdefault("ZIP_HASH_ROUNDS", "4")
os.environ.setdefault("PAYMENT_DRIVER", "mock")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from paydriver import models
from paydriver.database import Base
from paydriver.main import create_app
from paydriver.payments import DriverRegistry, MockBackend, MockDriver, StripeDriver
from paydriver.payments.conn import CardConn


# --- Test Database Setup ---
# In-memory SQLite shared by every thread through a single connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(name="engine")
def create_test_engine():
    engine = create_engine(
        SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="session_factory")
def create_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(name="db_session")
def get_db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


# --- Payment backend ---

@pytest.fixture(name="backend")
def create_backend():
    return MockBackend()


@pytest.fixture(name="conn")
def create_conn(backend, session_factory):
    return CardConn(backend, session_factory, timeout_seconds=5)


@pytest.fixture(name="registry")
def create_registry(backend):
    registry = DriverRegistry()
    registry.register("mock", MockDriver(backend))
    registry.register("stripe", StripeDriver())
    return registry


# --- Users ---

def _add_user(db: Session, email: str, remote_customer_id=None) -> models.User:
    user = models.User(email=email, remote_customer_id=remote_customer_id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture(name="test_user")
def create_test_user(db_session: Session):
    return _add_user(db_session, "a@b.com")


@pytest.fixture(name="bound_user")
def create_bound_user(db_session: Session, backend: MockBackend):
    customer_id = backend.create_customer("bound@example.com").value
    return _add_user(db_session, "bound@example.com", customer_id)


@pytest.fixture(name="other_bound_user")
def create_other_bound_user(db_session: Session, backend: MockBackend):
    customer_id = backend.create_customer("other@example.com").value
    return _add_user(db_session, "other@example.com", customer_id)


# --- API client ---

@pytest.fixture(name="app")
def create_test_app(registry, engine):
    return create_app(registry=registry, driver_name="mock", engine=engine)


@pytest.fixture(name="client")
def get_client(app):
    with TestClient(app) as client:
        yield client
