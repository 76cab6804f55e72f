"""Prometheus metrics for the collector and the query API."""

from prometheus_client import Counter, Gauge, Histogram

# Collector metrics
collector_cycles_total = Counter(
  'tps_collector_cycles_total',
  'Collector fetch-validate-store cycles by outcome',
  ['outcome'],
)

collector_cycle_duration_seconds = Histogram(
  'tps_collector_cycle_duration_seconds',
  'Duration of one collector cycle in seconds',
  buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

last_stored_tps = Gauge('tps_last_stored_tps', 'TPS value of the most recently stored sample')
last_stored_mspt = Gauge('tps_last_stored_mspt', 'MSPT value of the most recently stored sample')

# HTTP metrics
request_duration_seconds = Histogram(
  'tps_request_duration_seconds',
  'Request duration in seconds',
  ['endpoint', 'method', 'status'],
  buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
)


def record_collector_cycle(outcome: str, duration_seconds: float) -> None:
  """Record the outcome and duration of one collector cycle.

  Args:
      outcome: Cycle outcome value (e.g. 'stored', 'invalid_data')
      duration_seconds: Wall time of the cycle
  """
  collector_cycles_total.labels(outcome=outcome).inc()
  collector_cycle_duration_seconds.observe(duration_seconds)


def record_stored_sample(tps: float, mspt: float) -> None:
  last_stored_tps.set(tps)
  last_stored_mspt.set(mspt)


def record_request_duration(endpoint: str, method: str, status: int, duration_seconds: float):
  """Record overall request duration.

  Args:
      endpoint: API endpoint path
      method: HTTP method (GET, POST, etc.)
      status: HTTP status code
      duration_seconds: Request duration in seconds
  """
  request_duration_seconds.labels(
    endpoint=endpoint, method=method, status=str(status)
  ).observe(duration_seconds)
