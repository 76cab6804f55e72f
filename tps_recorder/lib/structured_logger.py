"""Structured Logger with JSON Formatting.

Every log line is a single JSON object carrying the correlation ID of the
request or collector cycle that produced it.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from tps_recorder.lib.config import get_log_level
from tps_recorder.lib.distributed_tracing import get_correlation_id

# Attributes present on every LogRecord; anything else came in through `extra`.
_RESERVED_ATTRS = frozenset(
  vars(logging.LogRecord('', logging.INFO, '', 0, '', None, None)).keys()
) | {'message', 'asctime'}

SENSITIVE_KEYS = frozenset({'password', 'db_password', 'token', 'database_url'})


class JSONFormatter(logging.Formatter):
  """JSON formatter for structured logging."""

  def format(self, record: logging.LogRecord) -> str:
    """Format log record as JSON.

    Args:
        record: Log record to format

    Returns:
        JSON-formatted log string
    """
    log_data = {
      'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
      'level': record.levelname,
      'logger': record.name,
      'message': record.getMessage(),
      'module': record.module,
      'function': record.funcName,
      'correlation_id': get_correlation_id(),
    }

    for key, value in record.__dict__.items():
      if key in _RESERVED_ATTRS or key.startswith('_'):
        continue
      if key in SENSITIVE_KEYS:
        continue
      log_data[key] = value

    if record.exc_info:
      log_data['exception'] = {
        'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
        'message': str(record.exc_info[1]) if record.exc_info[1] else None,
      }

    return json.dumps(log_data, default=str)


class StructuredLogger:
  """Structured logger with JSON formatting.

  Usage:
      logger = StructuredLogger(__name__)
      logger.info('Stored TPS sample', tps=19.98, mspt=2.1)
      logger.error('Insert failed', exc_info=True, outcome='storage_failure')
  """

  def __init__(self, name: str):
    """Initialize structured logger.

    Args:
        name: Logger name (typically module name)
    """
    self.logger = logging.getLogger(name)

    self.logger.setLevel(getattr(logging, get_log_level(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    self.logger.handlers.clear()

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    self.logger.addHandler(handler)

    # Prevent propagation to avoid duplicate logs
    self.logger.propagate = False

  def info(self, message: str, **extra: Any) -> None:
    self.logger.info(message, extra=extra, stacklevel=2)

  def warning(self, message: str, exc_info: bool = False, **extra: Any) -> None:
    self.logger.warning(message, exc_info=exc_info, extra=extra, stacklevel=2)

  def error(self, message: str, exc_info: bool = False, **extra: Any) -> None:
    """Log ERROR level message.

    Args:
        message: Log message
        exc_info: Include exception traceback
        **extra: Additional context
    """
    self.logger.error(message, exc_info=exc_info, extra=extra, stacklevel=2)

  def debug(self, message: str, **extra: Any) -> None:
    self.logger.debug(message, extra=extra, stacklevel=2)


_access_logger = StructuredLogger('tps_recorder.access')


def log_request(endpoint: str, method: str, status_code: int, duration_ms: float) -> None:
  """Log an API request with its duration.

  Args:
      endpoint: API endpoint path
      method: HTTP method
      status_code: HTTP status code
      duration_ms: Request duration in milliseconds
  """
  _access_logger.info(
    f'{method} {endpoint}',
    endpoint=endpoint,
    method=method,
    status_code=status_code,
    duration_ms=round(duration_ms, 3),
  )
