"""Models package for database entities and Pydantic models."""

from tps_recorder.models.tps_history import HistoryBucket, SourceReading, TpsStats
from tps_recorder.models.tps_sample import TpsSample

__all__ = [
  'TpsSample',
  'SourceReading',
  'TpsStats',
  'HistoryBucket',
]
