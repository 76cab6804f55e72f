"""Shared test fixtures and utilities for all tests.

Provides an in-memory SQLite store with the tps_history table, a FastAPI
test client wired to it, and helpers for seeding samples.
"""

import logging
import sys
from pathlib import Path

# Ensure the project root is first in sys.path so `tps_recorder` resolves to
# this checkout even when the package is not installed.
project_root = str(Path(__file__).parent.parent.absolute())
if project_root not in sys.path:
  sys.path.insert(0, project_root)

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tps_recorder.app import app
from tps_recorder.lib.database import create_tables, dispose_engine, get_db_session
from tps_recorder.lib.distributed_tracing import reset_correlation_id
from tps_recorder.models.tps_sample import TpsSample

DB_ENV_VARS = [
  'DATABASE_URL',
  'DB_HOST',
  'DB_PORT',
  'DB_USER',
  'DB_PASSWORD',
  'DB_NAME',
  'DB_DRIVER',
  'DB_CREATE_TABLES',
  'SOURCE_API_URL',
]


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def engine():
  """In-memory SQLite engine shared across threads, with tables created."""
  engine = create_engine(
    'sqlite://',
    connect_args={'check_same_thread': False},
    poolclass=StaticPool,
  )
  create_tables(engine)
  yield engine
  engine.dispose()


@pytest.fixture
def session_factory(engine):
  return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
  session = session_factory()
  try:
    yield session
  finally:
    session.close()


@pytest.fixture
def add_samples(session_factory):
  """Insert (timestamp, tps[, mspt]) tuples into tps_history.

  Example:
      add_samples([(datetime(2024, 1, 1, 0, 0, 10), 18.0)])
  """

  def _add(samples):
    with session_factory() as session:
      for sample in samples:
        record_timestamp, tps = sample[0], sample[1]
        mspt = sample[2] if len(sample) > 2 else 2.0
        if record_timestamp.tzinfo is None:
          record_timestamp = record_timestamp.replace(tzinfo=timezone.utc)
        session.add(TpsSample(record_timestamp=record_timestamp, tps=tps, mspt=mspt))
      session.commit()

  return _add


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env(monkeypatch):
  """Remove database and source settings from the environment."""
  for name in DB_ENV_VARS:
    monkeypatch.delenv(name, raising=False)
  dispose_engine()
  yield monkeypatch
  dispose_engine()


@pytest.fixture(autouse=True)
def reset_tracing():
  reset_correlation_id()
  yield
  reset_correlation_id()


@pytest.fixture(autouse=True)
def capture_package_logs(caplog):
  """Attach caplog to the package loggers, which do not propagate to root."""
  loggers = [
    logging.getLogger(name)
    for name in list(logging.root.manager.loggerDict)
    if name.startswith('tps_recorder')
  ]
  for package_logger in loggers:
    package_logger.addHandler(caplog.handler)
  yield
  for package_logger in loggers:
    package_logger.removeHandler(caplog.handler)


# ============================================================================
# FastAPI Application Fixtures
# ============================================================================


@pytest.fixture
def client(session_factory):
  """Test client whose requests read from the in-memory store.

  The lifespan (collector scheduler) is not started because the client is
  not used as a context manager.
  """

  def override_get_db_session():
    session = session_factory()
    try:
      yield session
      session.commit()
    except Exception:
      session.rollback()
      raise
    finally:
      session.close()

  app.dependency_overrides[get_db_session] = override_get_db_session
  yield TestClient(app)
  app.dependency_overrides.clear()


@pytest.fixture
def utc_now():
  """Current UTC time truncated to the minute."""
  return datetime.now(timezone.utc).replace(second=0, microsecond=0)
