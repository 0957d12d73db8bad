import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core import models  # noqa: F401  (registers tables)
from app.core.config import settings
from app.core.db import Base, get_db
from app.services.cache import ResultCache


@pytest.fixture(autouse=True)
def _pin_settings(monkeypatch):
    monkeypatch.setattr(settings, "timezone", "Asia/Shanghai")
    monkeypatch.setattr(settings, "app_env", "development")
    monkeypatch.setattr(settings, "enable_preagg", True)
    monkeypatch.setattr(settings, "enable_preagg_read", True)
    monkeypatch.setattr(settings, "password", None)
    monkeypatch.setattr(settings, "cron_secret", None)
    monkeypatch.setattr(settings, "cliproxy_base_url", None)
    monkeypatch.setattr(settings, "cliproxy_api_key", None)
    monkeypatch.setattr(settings, "vitals_sample_rate", 0.2)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from app.api.main import app

    def _override():
        yield db

    app.dependency_overrides[get_db] = _override
    app.state.overview_cache = ResultCache()
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
