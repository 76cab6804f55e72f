"""Collector service: one fetch-validate-store cycle against the source API.

A cycle never raises. Every failure is classified into a `CycleOutcome`,
logged, and counted; the caller (the scheduler) only fires and forgets.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tps_recorder.lib.metrics import record_collector_cycle, record_stored_sample
from tps_recorder.lib.structured_logger import StructuredLogger
from tps_recorder.models.tps_history import SourceReading
from tps_recorder.models.tps_sample import TpsSample

logger = StructuredLogger(__name__)


class CycleOutcome(str, Enum):
  """Result of a single collector cycle."""

  STORED = 'stored'
  INVALID_DATA = 'invalid_data'
  SOURCE_UNREACHABLE = 'source_unreachable'
  MALFORMED_RESPONSE = 'malformed_response'
  SOURCE_ERROR_RESPONSE = 'source_error_response'
  STORAGE_FAILURE = 'storage_failure'
  UNEXPECTED_ERROR = 'unexpected_error'


class CollectorService:
  """Fetches one TPS reading from the source and appends it to tps_history.

  Provides methods to:
  - Fetch the source payload (bounded by a timeout)
  - Validate tps / mspt / lastUpdated
  - Insert exactly one row per valid payload
  """

  def __init__(
    self,
    session_factory: sessionmaker,
    source_url: str,
    timeout_seconds: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
  ):
    """Initialize collector service.

    Args:
        session_factory: Session factory bound to the shared engine
        source_url: Source metrics endpoint
        timeout_seconds: Upper bound for the whole HTTP exchange
        transport: Optional httpx transport (tests inject MockTransport)
    """
    self.session_factory = session_factory
    self.source_url = source_url
    self.timeout_seconds = timeout_seconds
    self._transport = transport

  async def fetch_and_store(self) -> CycleOutcome:
    """Run one fetch-validate-store cycle.

    Returns:
        The classified outcome of the cycle; never raises
    """
    start_time = time.monotonic()
    outcome = await self._run_cycle()
    record_collector_cycle(outcome.value, time.monotonic() - start_time)
    return outcome

  async def _run_cycle(self) -> CycleOutcome:
    try:
      payload = await self.fetch_payload()
    except httpx.HTTPStatusError as e:
      logger.error(
        f'Source API error: {e.response.status_code} - {e.response.reason_phrase}',
        outcome=CycleOutcome.SOURCE_ERROR_RESPONSE.value,
        status_code=e.response.status_code,
        source_url=self.source_url,
      )
      return CycleOutcome.SOURCE_ERROR_RESPONSE
    except httpx.RequestError as e:
      logger.error(
        f'Network error: no response from source API ({type(e).__name__})',
        outcome=CycleOutcome.SOURCE_UNREACHABLE.value,
        source_url=self.source_url,
        error=str(e),
      )
      return CycleOutcome.SOURCE_UNREACHABLE
    except ValueError as e:
      logger.error(
        'Source API returned a body that is not valid JSON',
        outcome=CycleOutcome.MALFORMED_RESPONSE.value,
        source_url=self.source_url,
        error=str(e),
      )
      return CycleOutcome.MALFORMED_RESPONSE
    except Exception as e:
      logger.error(
        f'Unexpected error while fetching TPS data: {e}',
        exc_info=True,
        outcome=CycleOutcome.UNEXPECTED_ERROR.value,
      )
      return CycleOutcome.UNEXPECTED_ERROR

    try:
      reading = SourceReading.model_validate(payload)
    except ValidationError as e:
      logger.error(
        'Invalid data received from source API',
        outcome=CycleOutcome.INVALID_DATA.value,
        payload=payload,
        errors=[f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors()],
      )
      return CycleOutcome.INVALID_DATA

    try:
      loop = asyncio.get_running_loop()
      await loop.run_in_executor(None, self.store_reading, reading)
    except SQLAlchemyError as e:
      logger.error(
        f'Failed to store TPS sample: {e}',
        outcome=CycleOutcome.STORAGE_FAILURE.value,
        record_timestamp=reading.last_updated.isoformat(),
      )
      return CycleOutcome.STORAGE_FAILURE
    except Exception as e:
      logger.error(
        f'Unexpected error while storing TPS sample: {e}',
        exc_info=True,
        outcome=CycleOutcome.UNEXPECTED_ERROR.value,
      )
      return CycleOutcome.UNEXPECTED_ERROR

    record_stored_sample(reading.tps, reading.mspt)
    logger.info(
      f'Stored sample: {reading.last_updated.isoformat()} | TPS: {reading.tps}, MSPT: {reading.mspt}',
      outcome=CycleOutcome.STORED.value,
      record_timestamp=reading.last_updated.isoformat(),
      tps=reading.tps,
      mspt=reading.mspt,
    )
    return CycleOutcome.STORED

  async def fetch_payload(self) -> Any:
    """GET the source URL and decode its JSON body.

    Raises:
        httpx.HTTPStatusError: Source answered with a non-2xx status
        httpx.RequestError: No response (connect error, timeout, ...)
        ValueError: Body is not JSON
    """
    async with httpx.AsyncClient(
      timeout=self.timeout_seconds, transport=self._transport
    ) as client:
      response = await client.get(self.source_url, headers={'Accept': 'application/json'})
      response.raise_for_status()
      return response.json()

  def store_reading(self, reading: SourceReading) -> None:
    """Insert one row for a validated reading in its own transaction.

    Raises:
        SQLAlchemyError: If the insert or commit fails (after rollback)
    """
    sample = TpsSample(
      record_timestamp=reading.last_updated,
      tps=reading.tps,
      mspt=reading.mspt,
    )
    with self.session_factory() as session:
      try:
        session.add(sample)
        session.commit()
      except SQLAlchemyError:
        session.rollback()
        raise
