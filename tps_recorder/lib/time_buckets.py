"""Dialect-aware time bucketing for aggregation queries.

`bucket_start(column, width)` renders the start of the bucket containing
`column` as a `YYYY-MM-DD HH:MM:SS` string (UTC). The string form sorts
chronologically and groups identically on every supported backend.
"""

from enum import Enum

from sqlalchemy import String
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement


class BucketWidth(str, Enum):
  """Granularity a timestamp is truncated to."""

  MINUTE = 'minute'
  HOUR = 'hour'


_POSTGRES_UNITS = {BucketWidth.MINUTE: 'minute', BucketWidth.HOUR: 'hour'}
_MYSQL_FORMATS = {BucketWidth.MINUTE: '%Y-%m-%d %H:%i:00', BucketWidth.HOUR: '%Y-%m-%d %H:00:00'}
_SQLITE_FORMATS = {BucketWidth.MINUTE: '%Y-%m-%d %H:%M:00', BucketWidth.HOUR: '%Y-%m-%d %H:00:00'}


class bucket_start(FunctionElement):
  """Truncate a timestamp column to `width` and format it as text."""

  type = String()
  name = 'bucket_start'
  # width is not part of the cache key
  inherit_cache = False

  def __init__(self, column, width: BucketWidth):
    self.width = BucketWidth(width)
    super().__init__(column)


def _column_sql(element, compiler, **kw) -> str:
  (column,) = element.clauses
  return compiler.process(column, **kw)


@compiles(bucket_start)
def _compile_default(element, compiler, **kw):
  raise NotImplementedError(
    f'bucket_start is not supported on the {compiler.dialect.name} dialect'
  )


@compiles(bucket_start, 'postgresql')
def _compile_postgresql(element, compiler, **kw):
  """Render for a timestamptz column.

  On a timestamp without time zone column, AT TIME ZONE yields timestamptz and
  to_char renders it in the session time zone, so the column must be
  timestamptz (`DateTime(timezone=True)`).
  """
  unit = _POSTGRES_UNITS[element.width]
  column = _column_sql(element, compiler, **kw)
  return (
    f"to_char(date_trunc('{unit}', {column} AT TIME ZONE 'UTC'), "
    f"'YYYY-MM-DD HH24:MI:SS')"
  )


@compiles(bucket_start, 'mysql')
@compiles(bucket_start, 'mariadb')
def _compile_mysql(element, compiler, **kw):
  fmt = _MYSQL_FORMATS[element.width]
  if compiler.dialect.paramstyle in ('format', 'pyformat'):
    fmt = fmt.replace('%', '%%')
  return f"DATE_FORMAT({_column_sql(element, compiler, **kw)}, '{fmt}')"


@compiles(bucket_start, 'sqlite')
def _compile_sqlite(element, compiler, **kw):
  fmt = _SQLITE_FORMATS[element.width]
  return f"strftime('{fmt}', {_column_sql(element, compiler, **kw)})"
