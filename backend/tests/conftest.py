from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from helpers import RecordingNotifier
from shopcore.config import settings
from shopcore.db import get_db, init_db, make_engine
from shopcore.main import app
from shopcore.models.product import Product
from shopcore.models.user import User


@pytest.fixture(autouse=True)
def lock_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOCK_DIR", str(tmp_path / "locks"))


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'shop.db'}")
    init_db(bind=eng, reset=False)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def seed(session_factory):
    """Three users (bob inactive) and four products; returns their ids by nickname."""
    s = session_factory()
    try:
        users = {
            "alice": User(username="alice", email="alice@example.com"),
            "bob": User(username="bob", email="bob@example.com", is_active=False),
            "carol": User(username="carol", email="carol@example.com"),
        }
        products = {
            "tea": Product(sku="TEA-100", name="Tea 100g", price=Decimal("300"), stock=10),
            "coffee": Product(sku="COF-200", name="Coffee 200g", price=Decimal("600"), stock=5),
            "mug": Product(sku="MUG-1", name="Mug", price=Decimal("250"), stock=1),
            "retired": Product(
                sku="OLD-1", name="Retired Blend", price=Decimal("100"), stock=10, is_active=False
            ),
        }
        s.add_all(list(users.values()) + list(products.values()))
        s.commit()
        ids = {k: v.id for k, v in users.items()}
        ids.update({k: v.id for k, v in products.items()})
    finally:
        s.close()
    return ids


@pytest.fixture
def client(session_factory):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
