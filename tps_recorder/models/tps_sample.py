from sqlalchemy import BigInteger, Column, DateTime, Float, Index, Integer

from tps_recorder.lib.database import Base


class TpsSample(Base):
  """One TPS/MSPT measurement as reported by the source.

  Rows are append-only: written once per successful collector cycle and
  never updated or deleted.
  """

  __tablename__ = 'tps_history'

  id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
  # timestamptz on PostgreSQL; bucket_start relies on it
  record_timestamp = Column(DateTime(timezone=True), nullable=False)
  tps = Column(Float, nullable=False)
  mspt = Column(Float, nullable=False)

  __table_args__ = (Index('ix_tps_history_record_timestamp', 'record_timestamp'),)

  def __repr__(self) -> str:
    return f'<TpsSample {self.record_timestamp} tps={self.tps} mspt={self.mspt}>'
