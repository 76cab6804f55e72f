"""Database Connection Module

Provides the process-wide SQLAlchemy engine (QueuePool) shared by the
collector and the query API. The engine is created lazily on first use and
disposed on application shutdown.
"""

from typing import Generator

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from tps_recorder.lib.config import Settings, get_settings
from tps_recorder.lib.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)

Base = declarative_base()


class DatabaseNotConfiguredError(RuntimeError):
  """Raised when the engine is requested but no database is configured."""


def build_connection_url(settings: Settings) -> URL:
  """Build the SQLAlchemy URL from settings.

  `DATABASE_URL` wins when set; otherwise the URL is assembled from the
  DB_* variables so passwords never need URL-escaping.

  Raises:
      DatabaseNotConfiguredError: If neither form is configured
  """
  if settings.database_url:
    return make_url(settings.database_url)

  if not settings.database_configured:
    missing = []
    if not settings.db_host:
      missing.append('DB_HOST')
    if not settings.db_name:
      missing.append('DB_NAME')
    raise DatabaseNotConfiguredError(f"Missing required configuration: {', '.join(missing)}")

  return URL.create(
    settings.db_driver,
    username=settings.db_user,
    password=settings.db_password,
    host=settings.db_host,
    port=settings.db_port,
    database=settings.db_name,
  )


def create_db_engine(
  url: URL | str,
  pool_size: int = 10,
  max_overflow: int = 0,
  pool_pre_ping: bool = True,
) -> Engine:
  """Create SQLAlchemy engine with a bounded QueuePool.

  Callers beyond `pool_size + max_overflow` wait for a connection to be
  returned (up to the pool timeout).

  Args:
      url: Database URL
      pool_size: Number of connections to maintain in pool
      max_overflow: Maximum overflow connections beyond pool_size
      pool_pre_ping: Test connections before use to detect stale connections

  Returns:
      Configured SQLAlchemy engine
  """
  return create_engine(
    url,
    poolclass=QueuePool,
    pool_size=pool_size,
    max_overflow=max_overflow,
    pool_pre_ping=pool_pre_ping,
    pool_recycle=3600,
    echo=False,
  )


# Global engine instance (lazy-initialized)
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_engine() -> Engine:
  """Get or create global engine instance.

  Raises:
      DatabaseNotConfiguredError: If the database is not configured
  """
  global _engine
  if _engine is None:
    settings = get_settings()
    url = build_connection_url(settings)
    _engine = create_db_engine(
      url,
      pool_size=settings.db_pool_size,
      max_overflow=settings.db_max_overflow,
    )
    logger.info(
      'Database engine created',
      db_backend=url.get_backend_name(),
      db_host=url.host,
      db_name=url.database,
      pool_size=settings.db_pool_size,
    )
  return _engine


def get_session_factory() -> sessionmaker:
  """Get session factory bound to the global engine.

  Usage:
      SessionFactory = get_session_factory()
      with SessionFactory() as session:
          session.add(TpsSample(...))
          session.commit()
  """
  global _session_factory
  if _session_factory is None:
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=get_engine())
  return _session_factory


def get_db_session() -> Generator[Session, None, None]:
  """Get database session for dependency injection.

  Usage (FastAPI):
      @router.get('/history')
      async def history(db: Session = Depends(get_db_session)):
          ...
  """
  SessionFactory = get_session_factory()
  session = SessionFactory()
  try:
    yield session
    session.commit()
  except Exception:
    session.rollback()
    raise
  finally:
    session.close()


def create_tables(engine: Engine | None = None) -> None:
  """Create missing tables for all registered models (no migrations)."""
  # Register models on Base.metadata
  import tps_recorder.models  # noqa: F401

  Base.metadata.create_all(bind=engine or get_engine())


def dispose_engine() -> None:
  """Close all pooled connections and forget the global engine."""
  global _engine, _session_factory
  if _engine is not None:
    _engine.dispose()
    logger.info('Database engine disposed')
  _engine = None
  _session_factory = None


def check_connection() -> bool:
  """Return True when a `SELECT 1` round-trip succeeds."""
  try:
    with get_engine().connect() as conn:
      conn.execute(text('SELECT 1'))
    return True
  except Exception as e:
    logger.warning(f'Database connection test failed: {e}')
    return False
