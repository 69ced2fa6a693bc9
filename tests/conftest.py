import importlib
import os
from pathlib import Path

os.environ["ENVIRONMENT"] = "development"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["BANK_WEBHOOK_SECRET"] = "test-bank-secret"
os.environ["METRICS_ENABLED"] = "true"

import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config

from tests.payment_helpers import FakeProvider


def _setup_app(database_url: str):
    os.environ["DATABASE_URL"] = database_url

    import app.factu.core.config as config
    import app.factu.db.session as session
    import app.main as main

    importlib.reload(config)
    importlib.reload(session)
    importlib.reload(main)

    return main.create_app(), session


def _run_migrations(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    config = Config("alembic.ini")
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


@pytest.fixture()
def client(tmp_path: Path):
    db_path = tmp_path / "test.db"
    database_url = f"sqlite+pysqlite:///{db_path}"

    _run_migrations(database_url)
    app, session = _setup_app(database_url)

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    session.engine.dispose()


@pytest.fixture()
def db_session(client):
    from app.factu.db.session import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def provider(client):
    from app.factu.services.mercadopago import get_payment_provider

    fake = FakeProvider()
    client.app.dependency_overrides[get_payment_provider] = lambda: fake
    return fake
