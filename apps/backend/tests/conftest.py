from __future__ import annotations

import os
import tempfile
from typing import Any, Callable, Generator

import pytest
from sqlalchemy.orm import sessionmaker

from folio_finance import models
from folio_finance.core.database import Base, build_engine, get_db
from folio_finance.core.deps import get_counter_store
from folio_finance.main import app
from folio_finance.seed import seed_categories, seed_currencies, seed_permissions
from folio_finance.services.security import InMemoryCounterStore


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # temp file so the developer database is never touched
    fd, path = tempfile.mkstemp(prefix="folio_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    try:
        os.remove(path)
    except OSError:
        pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    eng = build_engine(test_db_url)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Any, Any, Any]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    # shared catalogue plus one user per role we exercise
    seed_permissions(session)
    seed_currencies(session)
    seed_categories(session)
    session.add_all(
        [
            models.User(email_hash="1" * 64, name="Root", role=models.Role.SUPERADMIN),
            models.User(email_hash="2" * 64, name="Ana", role=models.Role.ADMIN),
            models.User(email_hash="3" * 64, name="Beto", role=models.Role.ADMIN),
            models.User(email_hash="4" * 64, name="Carla", role=models.Role.USER),
        ]
    )
    session.commit()

    try:
        yield session
    finally:
        session.close()
        # children first so foreign keys stay satisfied
        with engine.begin() as conn:
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())


@pytest.fixture()
def users(db_session) -> dict[str, int]:
    rows = db_session.query(models.User).all()
    by_name = {u.name: u.id for u in rows}
    return {
        "superadmin": by_name["Root"],
        "admin": by_name["Ana"],
        "other": by_name["Beto"],
        "member": by_name["Carla"],
    }


def auth(user_id: int) -> dict[str, str]:
    return {"X-User-Id": str(user_id)}


@pytest.fixture()
def admin_headers(users) -> dict[str, str]:
    return auth(users["admin"])


@pytest.fixture()
def other_headers(users) -> dict[str, str]:
    return auth(users["other"])


@pytest.fixture()
def member_headers(users) -> dict[str, str]:
    return auth(users["member"])


@pytest.fixture()
def superadmin_headers(users) -> dict[str, str]:
    return auth(users["superadmin"])


@pytest.fixture()
def counter_store() -> InMemoryCounterStore:
    return InMemoryCounterStore()


@pytest.fixture(autouse=True)
def override_dependency(db_session, counter_store):
    def _get_db_override():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_counter_store] = lambda: counter_store
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def create_account(client) -> Callable[..., dict]:
    def _create(headers: dict[str, str], name: str, initial_balance: int | str = 0, **extra: Any) -> dict:
        body = {"name": name, "type": "CHECKING", "currency_code": "CLP", "initial_balance": initial_balance}
        body.update(extra)
        resp = client.post("/api/finance/accounts", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _create


@pytest.fixture()
def category_id(client, admin_headers) -> Callable[[str], int]:
    cache: dict[str, int] = {}

    def _lookup(name: str) -> int:
        if not cache:
            resp = client.get("/api/finance/categories", headers=admin_headers)
            assert resp.status_code == 200, resp.text
            cache.update({c["name"]: c["id"] for c in resp.json()["data"]})
        return cache[name]

    return _lookup
