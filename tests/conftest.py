# Pytest configuration for backend API tests.
# Forces a local SQLite DB, disables Redis, wires the JWT secret and points local storage at a temp dir.
import os
import tempfile
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, predictable JWT secret, throwaway uploads
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("VENDRA_JWT_SECRET", "test-secret")
os.environ.setdefault("STORAGE_TYPE", "local")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="vendra-uploads-"))

import sys
# Ensure the repo root is on sys.path so 'vendra' resolves when running pytest from the repo root
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from vendra.main import app  # noqa: E402
from vendra.db import Base, SessionLocal, engine  # noqa: E402
from vendra import models  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db() -> Iterator[None]:
    """
    Session-level database bootstrap using a local SQLite file.

    Drops and recreates schema once per test session to ensure a clean slate.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """
    Function-level isolation: drop and recreate schema before each test.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """
    FastAPI TestClient bound to the application for HTTP-level tests.
    """
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def make_admin():
    """Promote a user to admin directly in the database (admins are never self-registered)."""
    def _promote(user_id: int) -> None:
        db = SessionLocal()
        try:
            user = db.get(models.User, user_id)
            user.role = "admin"
            db.commit()
        finally:
            db.close()

    return _promote
