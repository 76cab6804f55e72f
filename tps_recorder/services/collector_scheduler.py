"""Fixed-interval scheduler for collector cycles.

Each tick spawns an independent cycle task and returns to the timer straight
away, so a slow cycle never delays the next tick. Cycles may overlap.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from tps_recorder.lib.distributed_tracing import generate_correlation_id
from tps_recorder.lib.structured_logger import StructuredLogger
from tps_recorder.services.collector_service import CollectorService, CycleOutcome

logger = StructuredLogger(__name__)


@dataclass
class SchedulerStatus:
  """Snapshot of the scheduler state."""

  running: bool = False
  interval_seconds: float = 10.0
  started_at: Optional[datetime] = None
  ticks: int = 0
  cycles_in_flight: int = 0
  outcomes: Dict[str, int] = field(default_factory=dict)
  last_outcome: Optional[str] = None
  last_cycle_at: Optional[datetime] = None

  def to_dict(self) -> dict:
    return {
      'running': self.running,
      'interval_seconds': self.interval_seconds,
      'started_at': self.started_at.isoformat() if self.started_at else None,
      'ticks': self.ticks,
      'cycles_in_flight': self.cycles_in_flight,
      'outcomes': dict(self.outcomes),
      'last_outcome': self.last_outcome,
      'last_cycle_at': self.last_cycle_at.isoformat() if self.last_cycle_at else None,
    }


class CollectorScheduler:
  """Fires `CollectorService.fetch_and_store` every `interval_seconds`.

  Example:
      >>> scheduler = CollectorScheduler(collector, interval_seconds=10)
      >>> await scheduler.start()
      >>> scheduler.get_status().ticks
      >>> await scheduler.stop()
  """

  def __init__(self, collector: CollectorService, interval_seconds: float = 10.0):
    if interval_seconds <= 0:
      raise ValueError(f'interval_seconds must be positive, got {interval_seconds}')
    self._collector = collector
    self._interval = float(interval_seconds)
    self._timer_task: Optional[asyncio.Task] = None
    self._stop_event = asyncio.Event()
    self._cycles: Set[asyncio.Task] = set()
    self._status = SchedulerStatus(interval_seconds=self._interval)

  @property
  def is_running(self) -> bool:
    return self._status.running

  def get_status(self) -> SchedulerStatus:
    return SchedulerStatus(
      running=self._status.running,
      interval_seconds=self._status.interval_seconds,
      started_at=self._status.started_at,
      ticks=self._status.ticks,
      cycles_in_flight=len(self._cycles),
      outcomes=dict(self._status.outcomes),
      last_outcome=self._status.last_outcome,
      last_cycle_at=self._status.last_cycle_at,
    )

  async def start(self) -> None:
    """Start the timer loop.

    Raises:
        RuntimeError: If the scheduler is already running
    """
    if self._status.running:
      raise RuntimeError('Collector scheduler is already running')

    self._stop_event.clear()
    self._status.running = True
    self._status.started_at = datetime.now(timezone.utc)
    self._timer_task = asyncio.create_task(self._timer_loop(), name='tps-collector-timer')

    logger.info(
      f'TPS collector started, running every {self._interval:g} seconds',
      interval_seconds=self._interval,
      source_url=self._collector.source_url,
    )

  async def stop(self, timeout: float = 10.0) -> None:
    """Stop firing ticks and drain in-flight cycles.

    Cycles still running after `timeout` seconds are cancelled.
    """
    if not self._status.running:
      return

    self._stop_event.set()
    if self._timer_task is not None:
      await self._timer_task
      self._timer_task = None

    pending = set(self._cycles)
    if pending:
      _, still_running = await asyncio.wait(pending, timeout=timeout)
      for task in still_running:
        task.cancel()
      if still_running:
        logger.warning(
          f'Cancelled {len(still_running)} collector cycles still running at shutdown',
          cancelled=len(still_running),
        )
        await asyncio.gather(*still_running, return_exceptions=True)

    self._status.running = False
    logger.info('TPS collector stopped', ticks=self._status.ticks)

  def fire(self) -> asyncio.Task:
    """Spawn one cycle without waiting for it."""
    self._status.ticks += 1
    task = asyncio.create_task(self._run_cycle(), name=f'tps-collector-cycle-{self._status.ticks}')
    self._cycles.add(task)
    task.add_done_callback(self._cycles.discard)
    return task

  async def _timer_loop(self) -> None:
    while not self._stop_event.is_set():
      try:
        await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        break
      except asyncio.TimeoutError:
        pass

      logger.info('Timer fired: fetching and storing TPS data')
      self.fire()

  async def _run_cycle(self) -> None:
    # Runs in its own task, so the cycle ID does not leak into other tasks
    cycle_id = generate_correlation_id()
    try:
      outcome = await self._collector.fetch_and_store()
    except Exception as e:
      logger.error(
        f'Collector cycle raised unexpectedly: {e}',
        exc_info=True,
        cycle_id=cycle_id,
      )
      outcome = CycleOutcome.UNEXPECTED_ERROR

    self._status.outcomes[outcome.value] = self._status.outcomes.get(outcome.value, 0) + 1
    self._status.last_outcome = outcome.value
    self._status.last_cycle_at = datetime.now(timezone.utc)
