from __future__ import annotations

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import chatcore.db.session as db_session
from chatcore.core.rate_limit import friend_request_limiter
from chatcore.main import app


@pytest.fixture()
def database(tmp_path):
    database_path = tmp_path / "test.db"
    db_session.configure_engine(f"sqlite:///{database_path}")
    db_session.init_db()
    yield db_session.open_session


@pytest.fixture()
def client(database):
    friend_request_limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
