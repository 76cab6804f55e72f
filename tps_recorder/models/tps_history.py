"""Pydantic models for the source payload and the history API."""

import math
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceReading(BaseModel):
  """Payload returned by the source metrics endpoint.

  `tps` and `mspt` accept numbers or numeric strings; booleans, NaN and
  infinities are rejected. `lastUpdated` must parse as a timestamp; naive
  values are taken as UTC.
  """

  model_config = ConfigDict(populate_by_name=True, extra='ignore')

  tps: float
  mspt: float
  last_updated: datetime = Field(..., alias='lastUpdated')

  @field_validator('tps', 'mspt', mode='before')
  @classmethod
  def require_number_or_numeric_string(cls, v):
    # bool is an int subclass
    if isinstance(v, bool) or not isinstance(v, (int, float, str)):
      raise ValueError('must be a number or a numeric string')
    return v

  @field_validator('tps', 'mspt')
  @classmethod
  def require_finite(cls, v: float) -> float:
    if not math.isfinite(v):
      raise ValueError('must be a finite number')
    return v

  @field_validator('last_updated')
  @classmethod
  def normalize_to_utc(cls, v: datetime) -> datetime:
    if v.tzinfo is None:
      return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class TpsStats(BaseModel):
  """Aggregated TPS values within one bucket."""

  average: float
  min: float
  max: float


class HistoryBucket(BaseModel):
  """Single time bucket of the history response."""

  timestamp: str = Field(..., description='Bucket start (UTC, YYYY-MM-DD HH:MM:SS)')
  tps: TpsStats
