"""TPS history API endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from tps_recorder.lib.database import get_db_session
from tps_recorder.lib.structured_logger import StructuredLogger
from tps_recorder.models.tps_history import HistoryBucket
from tps_recorder.services.history_service import HistoryService, resolve_period

logger = StructuredLogger(__name__)

router = APIRouter(prefix='/api/tps', tags=['TPS'])


@router.get('/history', response_model=List[HistoryBucket])
def get_tps_history(
  period: Optional[str] = Query(
    None, description='Lookback window: 24h (1-minute buckets), 7d or 30d (1-hour buckets)'
  ),
  db: Session = Depends(get_db_session),
):
  """Get time-bucketed TPS aggregates.

  Unrecognized or missing `period` values fall back to 24h. Storage errors
  surface as a generic 500 through the app-level exception handlers.

  Args:
      period: Period token ("24h", "7d", "30d")
      db: Database session

  Returns:
      Buckets ordered by start time, each with average/min/max TPS
  """
  resolved = resolve_period(period)
  if period is not None and resolved.value != period:
    logger.debug(f'Unrecognized period {period!r}, using {resolved.value}', period=period)

  return HistoryService(db).get_history(resolved)
