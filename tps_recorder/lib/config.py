"""Environment-sourced configuration.

Values are read from the process environment. `.env` and `.env.local` are
loaded when this module is first imported (real environment variables
always win).
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv


def load_env_files() -> None:
  """Load `.env` then `.env.local` without overriding the real environment."""
  load_dotenv(dotenv_path='.env', override=False)
  load_dotenv(dotenv_path='.env.local', override=False)


def get_log_level() -> str:
  return os.getenv('LOG_LEVEL', 'INFO').upper()


def _get_int(name: str, default: int) -> int:
  raw = os.getenv(name)
  if raw is None or raw.strip() == '':
    return default
  try:
    return int(raw)
  except ValueError:
    raise ValueError(f'{name} must be an integer, got {raw!r}') from None


def _get_float(name: str, default: float) -> float:
  raw = os.getenv(name)
  if raw is None or raw.strip() == '':
    return default
  try:
    return float(raw)
  except ValueError:
    raise ValueError(f'{name} must be a number, got {raw!r}') from None


def _get_bool(name: str, default: bool) -> bool:
  raw = os.getenv(name)
  if raw is None or raw.strip() == '':
    return default
  return raw.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
  """Runtime settings for the recorder process."""

  db_driver: str = 'postgresql+psycopg'
  db_host: Optional[str] = None
  db_port: Optional[int] = None
  db_user: Optional[str] = None
  db_password: Optional[str] = None
  db_name: Optional[str] = None
  database_url: Optional[str] = None
  db_pool_size: int = 10
  db_max_overflow: int = 0
  db_create_tables: bool = False

  source_api_url: Optional[str] = None
  source_fetch_timeout_seconds: float = 5.0
  collect_interval_seconds: float = 10.0

  host: str = '0.0.0.0'
  port: int = 3000
  log_level: str = 'INFO'
  cors_allow_origins: List[str] = field(default_factory=lambda: ['*'])

  @property
  def database_configured(self) -> bool:
    """True when enough is set to build a connection URL."""
    return bool(self.database_url or (self.db_host and self.db_name))

  @property
  def collector_enabled(self) -> bool:
    return bool(self.source_api_url)


def get_settings() -> Settings:
  """Build settings from the current environment.

  Raises:
      ValueError: If a numeric variable cannot be parsed
  """
  origins = os.getenv('CORS_ALLOW_ORIGINS', '*')

  return Settings(
    db_driver=os.getenv('DB_DRIVER', 'postgresql+psycopg'),
    db_host=os.getenv('DB_HOST') or None,
    db_port=_get_int('DB_PORT', 0) or None,
    db_user=os.getenv('DB_USER') or None,
    db_password=os.getenv('DB_PASSWORD') or None,
    db_name=os.getenv('DB_NAME') or None,
    database_url=os.getenv('DATABASE_URL') or None,
    db_pool_size=_get_int('DB_POOL_SIZE', 10),
    db_max_overflow=_get_int('DB_MAX_OVERFLOW', 0),
    db_create_tables=_get_bool('DB_CREATE_TABLES', False),
    source_api_url=os.getenv('SOURCE_API_URL') or None,
    source_fetch_timeout_seconds=_get_float('SOURCE_FETCH_TIMEOUT_SECONDS', 5.0),
    collect_interval_seconds=_get_float('COLLECT_INTERVAL_SECONDS', 10.0),
    host=os.getenv('HOST', '0.0.0.0'),
    port=_get_int('PORT', 3000),
    log_level=get_log_level(),
    cors_allow_origins=[o.strip() for o in origins.split(',') if o.strip()],
  )


# Must run before any StructuredLogger reads LOG_LEVEL
load_env_files()
