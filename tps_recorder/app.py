"""FastAPI application for the TPS recorder."""

import time
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import SQLAlchemyError

from tps_recorder.lib.config import get_settings
from tps_recorder.lib.database import (
  DatabaseNotConfiguredError,
  check_connection,
  create_tables,
  dispose_engine,
  get_session_factory,
)
from tps_recorder.lib.distributed_tracing import set_correlation_id
from tps_recorder.lib.metrics import record_request_duration
from tps_recorder.lib.structured_logger import StructuredLogger, log_request
from tps_recorder.routers import router
from tps_recorder.services.collector_scheduler import CollectorScheduler
from tps_recorder.services.collector_service import CollectorService

logger = StructuredLogger(__name__)

INTERNAL_ERROR_BODY = {'error': 'Internal server error'}


def build_scheduler(settings) -> CollectorScheduler | None:
  """Create the collector scheduler, or None when it cannot run."""
  if not settings.collector_enabled:
    logger.warning('SOURCE_API_URL is not set; TPS collector disabled')
    return None
  if not settings.database_configured:
    logger.warning('Database is not configured; TPS collector disabled')
    return None

  collector = CollectorService(
    session_factory=get_session_factory(),
    source_url=settings.source_api_url,
    timeout_seconds=settings.source_fetch_timeout_seconds,
  )
  return CollectorScheduler(collector, interval_seconds=settings.collect_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
  """Start the collector with the app and release the pool on shutdown."""
  settings = get_settings()

  if settings.db_create_tables and settings.database_configured:
    create_tables()

  scheduler = build_scheduler(settings)
  app.state.scheduler = scheduler
  if scheduler is not None:
    await scheduler.start()

  try:
    yield
  finally:
    if scheduler is not None:
      await scheduler.stop()
    dispose_engine()


app = FastAPI(
  title='TPS Recorder API',
  description='Records server TPS/MSPT samples and serves time-bucketed history',
  version='0.1.0',
  lifespan=lifespan,
)

app.add_middleware(
  CORSMiddleware,
  allow_origins=get_settings().cors_allow_origins,
  allow_credentials=False,
  allow_methods=['GET'],
  allow_headers=['*'],
)


@app.middleware('http')
async def add_correlation_id(request: Request, call_next):
  """Attach a correlation ID to the request and log it with its duration."""
  correlation_id = request.headers.get('X-Correlation-ID', str(uuid4()))
  set_correlation_id(correlation_id)
  request.state.correlation_id = correlation_id

  start_time = time.time()
  response = await call_next(request)
  duration_seconds = time.time() - start_time

  response.headers['X-Correlation-ID'] = correlation_id

  # Skip health and metrics endpoints to reduce noise
  if request.url.path not in ['/health', '/api/health', '/metrics']:
    record_request_duration(
      endpoint=request.url.path,
      method=request.method,
      status=response.status_code,
      duration_seconds=duration_seconds,
    )
    log_request(
      endpoint=request.url.path,
      method=request.method,
      status_code=response.status_code,
      duration_ms=duration_seconds * 1000,
    )

  return response


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
  """Storage failures become a generic 500; details stay in the logs."""
  logger.error(
    f'Database error while handling {request.method} {request.url.path}: {exc}',
    exc_info=True,
    endpoint=request.url.path,
  )
  return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)


@app.exception_handler(DatabaseNotConfiguredError)
async def database_not_configured_handler(request: Request, exc: DatabaseNotConfiguredError):
  logger.error(f'Database not configured: {exc}', endpoint=request.url.path)
  return JSONResponse(status_code=500, content=INTERNAL_ERROR_BODY)


@app.get('/health')
async def health_root():
  """Health check endpoint at root level (for load balancers)."""
  return {'status': 'healthy'}


@app.get('/api/health')
def health_api(request: Request):
  """Detailed health: database reachability and collector status."""
  settings = get_settings()
  if not settings.database_configured:
    database = 'not_configured'
  else:
    database = 'ok' if check_connection() else 'unavailable'

  scheduler = getattr(request.app.state, 'scheduler', None)
  return {
    'status': 'healthy' if database == 'ok' else 'degraded',
    'database': database,
    'collector': scheduler.get_status().to_dict() if scheduler else {'running': False},
  }


@app.get('/metrics')
async def metrics_root():
  """Prometheus metrics endpoint."""
  return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(router)


def main() -> None:
  """Run the API server and collector with uvicorn."""
  import uvicorn

  settings = get_settings()
  logger.info(
    f'TPS recorder listening on http://{settings.host}:{settings.port}',
    host=settings.host,
    port=settings.port,
  )
  uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == '__main__':
  main()
