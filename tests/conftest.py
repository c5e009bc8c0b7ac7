from __future__ import annotations

import os
from collections.abc import Iterator
from typing import Any

import pytest
import sqlalchemy as sa

from sqla_joinmap import DatabaseDiscovery, Entity, Manager, SqlaDriver, joinmap_cache_clear

from .models import entity_metadata, metadata, seed


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+psycopg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> Iterator[sa.Engine]:
    engine = sa.create_engine(db_config, echo=False)
    yield engine
    engine.dispose()


@pytest.fixture
def connection(engine: sa.Engine) -> Iterator[sa.Connection]:
    """A connection to freshly created and seeded tables.

    The ORM commits through this connection, so tables are recreated for
    every test instead of rolling back one outer transaction.
    """
    with engine.begin() as conn:
        metadata.drop_all(conn)
        metadata.create_all(conn)
        seed(conn)

    conn = engine.connect()
    try:
        yield conn
    finally:
        conn.rollback()
        conn.close()
        with engine.begin() as cleanup:
            metadata.drop_all(cleanup)


@pytest.fixture
def driver(connection: sa.Connection) -> SqlaDriver:
    return SqlaDriver(connection)


@pytest.fixture
def manager(driver: SqlaDriver) -> Manager:
    return Manager(driver, DatabaseDiscovery(driver))


@pytest.fixture
def entities(driver: SqlaDriver) -> dict[str, Entity[Any]]:
    """Entity handles for the plain classes of ``models``, on a manager of their own."""
    manager = Manager(driver)
    return {name: manager.register(name, definition) for name, definition in entity_metadata().items()}


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    joinmap_cache_clear()
