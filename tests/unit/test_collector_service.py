"""Unit tests for the collector fetch-validate-store cycle.

The source endpoint is simulated with httpx.MockTransport; rows are written
to the in-memory SQLite store from conftest.
"""

from datetime import datetime
from unittest.mock import MagicMock

import httpx
import pytest
from prometheus_client import REGISTRY
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from tps_recorder.models.tps_sample import TpsSample
from tps_recorder.services.collector_service import CollectorService, CycleOutcome

SOURCE_URL = 'http://source.test/api/tps'


def make_collector(session_factory, handler) -> CollectorService:
  return CollectorService(
    session_factory=session_factory,
    source_url=SOURCE_URL,
    timeout_seconds=1.0,
    transport=httpx.MockTransport(handler),
  )


def json_handler(payload, status_code=200):
  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(status_code, json=payload)

  return handler


def stored_rows(session_factory):
  with session_factory() as session:
    return session.execute(select(TpsSample)).scalars().all()


def cycle_count(outcome: CycleOutcome) -> float:
  value = REGISTRY.get_sample_value('tps_collector_cycles_total', {'outcome': outcome.value})
  return value or 0.0


# ============================================================================
# Successful cycles
# ============================================================================


@pytest.mark.asyncio
async def test_valid_payload_stores_exactly_one_row(session_factory):
  """{tps:"19.98", mspt:"2.1", lastUpdated:"2024-01-01T00:00:05Z"} -> one row."""
  collector = make_collector(
    session_factory,
    json_handler({'tps': '19.98', 'mspt': '2.1', 'lastUpdated': '2024-01-01T00:00:05Z'}),
  )

  outcome = await collector.fetch_and_store()

  assert outcome is CycleOutcome.STORED
  rows = stored_rows(session_factory)
  assert len(rows) == 1
  assert rows[0].tps == 19.98
  assert rows[0].mspt == 2.1
  # SQLite hands back naive datetimes; the stored instant is UTC
  assert rows[0].record_timestamp.replace(tzinfo=None) == datetime(2024, 1, 1, 0, 0, 5)


@pytest.mark.asyncio
async def test_requests_the_configured_source_url(session_factory):
  seen = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(str(request.url))
    return httpx.Response(200, json={'tps': 20, 'mspt': 1, 'lastUpdated': '2024-01-01T00:00:00Z'})

  await make_collector(session_factory, handler).fetch_and_store()

  assert seen == [SOURCE_URL]


@pytest.mark.asyncio
async def test_each_cycle_appends_a_new_row(session_factory):
  payloads = iter(
    [
      {'tps': 20.0, 'mspt': 1.5, 'lastUpdated': '2024-01-01T00:00:00Z'},
      {'tps': 19.1, 'mspt': 8.4, 'lastUpdated': '2024-01-01T00:00:10Z'},
    ]
  )

  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json=next(payloads))

  collector = make_collector(session_factory, handler)
  assert await collector.fetch_and_store() is CycleOutcome.STORED
  assert await collector.fetch_and_store() is CycleOutcome.STORED

  rows = sorted(stored_rows(session_factory), key=lambda r: r.record_timestamp)
  assert [(r.tps, r.mspt) for r in rows] == [(20.0, 1.5), (19.1, 8.4)]


@pytest.mark.asyncio
async def test_successful_cycle_is_counted(session_factory):
  before = cycle_count(CycleOutcome.STORED)
  collector = make_collector(
    session_factory,
    json_handler({'tps': 20, 'mspt': 1, 'lastUpdated': '2024-01-01T00:00:00Z'}),
  )

  await collector.fetch_and_store()

  assert cycle_count(CycleOutcome.STORED) == before + 1


# ============================================================================
# Data-quality failures
# ============================================================================


@pytest.mark.asyncio
async def test_nan_tps_stores_nothing_and_logs_validation_failure(session_factory, caplog):
  collector = make_collector(
    session_factory,
    json_handler({'tps': 'NaN', 'mspt': '2.1', 'lastUpdated': '2024-01-01T00:00:05Z'}),
  )

  outcome = await collector.fetch_and_store()

  assert outcome is CycleOutcome.INVALID_DATA
  assert stored_rows(session_factory) == []
  failures = [r for r in caplog.records if 'Invalid data received' in r.getMessage()]
  assert len(failures) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
  'payload',
  [
    {'tps': 'abc', 'mspt': '2.1', 'lastUpdated': '2024-01-01T00:00:05Z'},
    {'tps': '19.9', 'mspt': 'NaN', 'lastUpdated': '2024-01-01T00:00:05Z'},
    {'tps': '19.9', 'mspt': '2.1', 'lastUpdated': 'yesterday'},
    {'tps': '19.9', 'mspt': '2.1'},
    {'tps': True, 'mspt': '2.1', 'lastUpdated': '2024-01-01T00:00:05Z'},
    {'tps': '19.9', 'mspt': False, 'lastUpdated': '2024-01-01T00:00:05Z'},
    {},
    ['not', 'an', 'object'],
  ],
)
async def test_invalid_payloads_store_nothing(session_factory, payload):
  collector = make_collector(session_factory, json_handler(payload))

  assert await collector.fetch_and_store() is CycleOutcome.INVALID_DATA
  assert stored_rows(session_factory) == []


# ============================================================================
# Source failures
# ============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize('status_code', [404, 500, 503])
async def test_non_2xx_status_is_source_error_response(session_factory, caplog, status_code):
  collector = make_collector(session_factory, json_handler({'error': 'down'}, status_code))

  outcome = await collector.fetch_and_store()

  assert outcome is CycleOutcome.SOURCE_ERROR_RESPONSE
  assert stored_rows(session_factory) == []
  assert any(str(status_code) in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
@pytest.mark.parametrize(
  'error_cls',
  [httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout],
)
async def test_no_response_is_source_unreachable(session_factory, error_cls):
  def handler(request: httpx.Request) -> httpx.Response:
    raise error_cls('no route to host', request=request)

  collector = make_collector(session_factory, handler)

  assert await collector.fetch_and_store() is CycleOutcome.SOURCE_UNREACHABLE
  assert stored_rows(session_factory) == []


@pytest.mark.asyncio
async def test_non_json_body_is_malformed_response(session_factory):
  def handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text='<html>Bad Gateway</html>')

  collector = make_collector(session_factory, handler)

  assert await collector.fetch_and_store() is CycleOutcome.MALFORMED_RESPONSE
  assert stored_rows(session_factory) == []


# ============================================================================
# Storage failures
# ============================================================================


@pytest.mark.asyncio
async def test_insert_failure_is_storage_failure_and_does_not_raise():
  failing_factory = MagicMock()
  session = failing_factory.return_value.__enter__.return_value
  session.commit.side_effect = OperationalError('INSERT INTO tps_history', {}, Exception('db down'))

  collector = make_collector(
    failing_factory,
    json_handler({'tps': 20, 'mspt': 1, 'lastUpdated': '2024-01-01T00:00:00Z'}),
  )

  outcome = await collector.fetch_and_store()

  assert outcome is CycleOutcome.STORAGE_FAILURE
  session.rollback.assert_called_once()


@pytest.mark.asyncio
async def test_failed_cycle_does_not_affect_the_next_one(session_factory):
  """A failed cycle leaves the collector usable for the next tick."""
  calls = {'n': 0}

  def handler(request: httpx.Request) -> httpx.Response:
    calls['n'] += 1
    if calls['n'] == 1:
      return httpx.Response(502)
    return httpx.Response(200, json={'tps': 18, 'mspt': 3, 'lastUpdated': '2024-01-01T00:00:00Z'})

  collector = make_collector(session_factory, handler)

  assert await collector.fetch_and_store() is CycleOutcome.SOURCE_ERROR_RESPONSE
  assert await collector.fetch_and_store() is CycleOutcome.STORED
  assert len(stored_rows(session_factory)) == 1
