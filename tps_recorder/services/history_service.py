"""History service: time-bucketed TPS aggregates over a lookback window."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from tps_recorder.lib.structured_logger import StructuredLogger
from tps_recorder.lib.time_buckets import BucketWidth, bucket_start
from tps_recorder.models.tps_sample import TpsSample

logger = StructuredLogger(__name__)


class Period(str, Enum):
  """Accepted values of the `period` query parameter."""

  LAST_24_HOURS = '24h'
  LAST_7_DAYS = '7d'
  LAST_30_DAYS = '30d'


@dataclass(frozen=True)
class PeriodWindow:
  lookback: timedelta
  bucket: BucketWidth


DEFAULT_PERIOD = Period.LAST_24_HOURS

PERIOD_WINDOWS: Dict[Period, PeriodWindow] = {
  Period.LAST_24_HOURS: PeriodWindow(lookback=timedelta(hours=24), bucket=BucketWidth.MINUTE),
  Period.LAST_7_DAYS: PeriodWindow(lookback=timedelta(days=7), bucket=BucketWidth.HOUR),
  Period.LAST_30_DAYS: PeriodWindow(lookback=timedelta(days=30), bucket=BucketWidth.HOUR),
}


def resolve_period(token: Optional[str]) -> Period:
  """Map a raw `period` token to a Period; anything unrecognized means 24h."""
  try:
    return Period(token)
  except ValueError:
    return DEFAULT_PERIOD


class HistoryService:
  """Read-only aggregation over tps_history."""

  def __init__(self, db: Session):
    """Initialize history service.

    Args:
        db: SQLAlchemy database session
    """
    self.db = db

  def get_history(self, period: Period = DEFAULT_PERIOD, now: Optional[datetime] = None) -> List[Dict]:
    """Aggregate TPS per bucket for the given period.

    Selects samples with record_timestamp >= now - lookback, truncates each
    timestamp to the period's bucket width and returns average/min/max TPS
    per bucket, ordered by bucket start.

    Args:
        period: Lookback window and bucket width selector
        now: Reference instant (defaults to the current UTC time)

    Returns:
        List of {'timestamp': str, 'tps': {'average', 'min', 'max'}}; empty
        when no samples fall in the window

    Raises:
        SQLAlchemyError: If the query fails
    """
    window = PERIOD_WINDOWS[period]
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
      now = now.replace(tzinfo=timezone.utc)
    cutoff = now.astimezone(timezone.utc) - window.lookback

    time_bucket = bucket_start(TpsSample.record_timestamp, window.bucket).label('time_bucket')
    stmt = (
      select(
        time_bucket,
        func.avg(TpsSample.tps).label('avg_tps'),
        func.min(TpsSample.tps).label('min_tps'),
        func.max(TpsSample.tps).label('max_tps'),
      )
      .where(TpsSample.record_timestamp >= cutoff)
      .group_by(time_bucket)
      .order_by(time_bucket.asc())
    )

    rows = self.db.execute(stmt).all()

    logger.debug(
      f'History query returned {len(rows)} buckets',
      period=period.value,
      bucket_width=window.bucket.value,
      cutoff=cutoff.isoformat(),
    )

    return [
      {
        'timestamp': row.time_bucket,
        'tps': {
          'average': float(row.avg_tps),
          'min': float(row.min_tps),
          'max': float(row.max_tps),
        },
      }
      for row in rows
    ]
