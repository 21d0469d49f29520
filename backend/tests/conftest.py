from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from daycare.application.services.payment_service import PaymentReconciliationService
from daycare.infrastructure.db.session import get_db
from daycare.interfaces.api.v1.dependencies.services import get_payment_gateway, get_receipt_notifier
from daycare.main import app
from tests.helpers.gateway import FakeGateway, RecordingNotifier


class FakeRedisClient:
    """In-memory subset of the redis client used by the cache and lock helpers."""

    def __init__(self):
        self.values: dict[str, str] = {}

    def ping(self) -> bool:
        return True

    def get(self, key: str):
        return self.values.get(key)

    def setex(self, key: str, _ttl: int, value: str) -> bool:
        self.values[key] = value
        return True

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.values:
            return None
        self.values[key] = value
        return True

    def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.values.pop(key, None) is not None)

    def eval(self, _script: str, _numkeys: int, key: str, token: str) -> int:
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0


def run_migrations(database_url: str) -> None:
    alembic_config = Config(str(Path(__file__).resolve().parents[1] / "alembic.ini"))
    alembic_config.set_main_option("sqlalchemy.url", database_url)
    alembic_config.attributes["configure_logger"] = False
    command.upgrade(alembic_config, "head")


@pytest.fixture(scope="session")
def engine(tmp_path_factory):
    database_url = f"sqlite:///{tmp_path_factory.mktemp('db') / 'payments.db'}"
    run_migrations(database_url)
    engine = create_engine(
        database_url,
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture(autouse=True)
def clean_database(engine):
    with engine.begin() as connection:
        connection.execute(text("DELETE FROM payments"))
        connection.execute(text("DELETE FROM invoices"))


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture
def fake_redis(monkeypatch):
    client = FakeRedisClient()
    monkeypatch.setattr("daycare.infrastructure.cache.redis_store.get_redis_client", lambda: client)
    monkeypatch.setattr("daycare.interfaces.api.v1.routes.ping.get_redis_client", lambda: client)
    return client


@pytest.fixture
def db_session(session_factory, fake_redis):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(db_session, fake_gateway, notifier):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_receipt_notifier] = lambda: notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def reconciliation_service(db_session, fake_gateway, notifier):
    return PaymentReconciliationService(db_session, fake_gateway, notifier=notifier)
