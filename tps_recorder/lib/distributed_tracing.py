"""Correlation IDs for HTTP requests and collector cycles.

Backed by a contextvar, so every asyncio task (request handler or collector
cycle) sees its own ID.
"""

import contextvars
from uuid import uuid4

NO_CORRELATION_ID = 'no-correlation-id'

correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar(
  'correlation_id', default=NO_CORRELATION_ID
)


def get_correlation_id() -> str:
  """Return the correlation ID of the current context."""
  return correlation_id.get()


def set_correlation_id(value: str) -> None:
  correlation_id.set(value)


def generate_correlation_id() -> str:
  """Generate a new correlation ID and set it in the current context.

  Returns:
      Generated correlation ID (UUID4 string)

  Usage:
      # At the start of a collector cycle
      cycle_id = generate_correlation_id()
  """
  value = str(uuid4())
  set_correlation_id(value)
  return value


def reset_correlation_id() -> None:
  correlation_id.set(NO_CORRELATION_ID)
