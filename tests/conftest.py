"""
Pytest configuration and fixtures for catalog-ingest tests

This module provides shared fixtures for unit, integration, and E2E tests.
"""
import os

import pytest

from catalog_ingest.core.config import IngestionSettings
from catalog_ingest.runtime import IngestionRuntime
from catalog_ingest.storage.blob_store import LocalBlobStore
from tests.fakes import (
    FakeClock,
    FakeMatcher,
    InMemoryCatalog,
    InMemoryUploadRepository,
    RecordingScheduler,
)


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that exercise the full pipeline"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Skips the requesting test when Docker is not available.

    Yields:
        PostgresContainer instance
    """
    try:
        from testcontainers.postgres import PostgresContainer

        container = PostgresContainer(
            image="postgres:16.2-alpine",
            username="test_catalog",
            password="test_password",
            dbname="test_catalog",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture(scope="session")
def db_pool(postgres_container):
    """
    Connection pool against the test container with the schema created

    Yields:
        Open DatabaseConnectionPool
    """
    from catalog_ingest.warehouse.connection import DatabaseConnectionPool
    from catalog_ingest.warehouse.schema_mgmt import SchemaManager

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_catalog",
        user="test_catalog",
        password="test_password",
    )
    pool.open()
    SchemaManager(pool).create_schema()
    yield pool
    pool.close()


@pytest.fixture(scope="function")
def clean_db(db_pool):
    """
    Provide a clean database by truncating all tables before each test

    Yields:
        Open DatabaseConnectionPool with empty tables
    """
    from catalog_ingest.warehouse.schema_mgmt import SchemaManager

    SchemaManager(db_pool).truncate_all()
    yield db_pool


# =======================
# PIPELINE FIXTURES (in-memory)
# =======================

@pytest.fixture
def settings(tmp_path) -> IngestionSettings:
    """Default thresholds with local blob storage and no enrichment pacing"""
    return IngestionSettings(
        blob_backend="local",
        blob_root=str(tmp_path / "blobs"),
        enrichment_batch_delay_seconds=0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def blob_store(settings) -> LocalBlobStore:
    return LocalBlobStore(settings.blob_root)


@pytest.fixture
def matcher() -> FakeMatcher:
    return FakeMatcher()


@pytest.fixture
def runtime(settings, blob_store, matcher, clock) -> IngestionRuntime:
    """
    Runtime wired to in-memory repositories and a recording scheduler

    Returns:
        IngestionRuntime whose queued tasks can be run with tests.fakes.drain
    """
    return IngestionRuntime(
        uploads=InMemoryUploadRepository(clock=clock),
        catalog=InMemoryCatalog(),
        blob_store=blob_store,
        scheduler=RecordingScheduler(),
        settings=settings,
        matcher=matcher,
        clock=clock,
        sleep=lambda seconds: None,
    )


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(autouse=True)
def isolated_settings_env(monkeypatch):
    """Keep CATALOG_* variables from the developer shell out of tests"""
    for name in list(os.environ):
        if name.startswith("CATALOG_"):
            monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def test_env_vars(monkeypatch) -> dict[str, str]:
    """
    Set test environment variables

    This fixture loads config/test.env for the duration of one test

    Returns:
        The variables that were set
    """
    from dotenv import dotenv_values

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    values = {k: v for k, v in dotenv_values(env_path).items() if v is not None}
    for name, value in values.items():
        monkeypatch.setenv(name, value)
    return values
