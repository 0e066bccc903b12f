import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from starlette.testclient import TestClient
from typer.testing import CliRunner

from servicebroker.db import init_db
from servicebroker.main import create_app
from servicebroker.store import MemoryInstanceStore, SqlInstanceStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite:///:memory:",
        echo=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(engine):
    return SqlInstanceStore(engine)


@pytest.fixture
def memory_store():
    return MemoryInstanceStore()


@pytest.fixture(params=["sql", "memory"])
def store(request):
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def client(sql_store):
    with TestClient(create_app(store=sql_store)) as client:
        yield client


@pytest.fixture
def memory_client(memory_store):
    with TestClient(create_app(store=memory_store), raise_server_exceptions=False) as client:
        yield client


@pytest.fixture()
def cli_runner(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test_cli.db'}")

    import servicebroker.cli as cli

    return CliRunner(), cli.app
