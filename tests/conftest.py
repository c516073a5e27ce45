import os

# settings are read at import time; keep the module level engine off postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.orm import sessionmaker

from storefront.data import models  # noqa: F401
from storefront.data.database import Base, build_engine
from storefront.domain.identity import AnonymousIdentity, CustomerIdentity
from storefront.services.cart_service import CartService
from storefront.services.lock_service import LockService
from tests.fakes import FakeCatalog, FakeRedis, RecordingNotifier, ScriptedGateway

CUSTOMER = CustomerIdentity(42)
GUEST = AnonymousIdentity("203.0.113.9")


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def lock_service(redis_client):
    return LockService(client=redis_client, wait_seconds=2, poll_interval=0.01)


@pytest.fixture
def catalog():
    return FakeCatalog({1: "19.99", 2: "5.00", 3: "0.10", 4: "120.00"})


@pytest.fixture
def cart_service(db, catalog, lock_service):
    return CartService(db=db, product_client=catalog, lock_service=lock_service)


@pytest.fixture
def gateway():
    return ScriptedGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()
