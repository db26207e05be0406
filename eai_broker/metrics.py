"""Prometheus metrics and a tiny HTTP server to expose them.

Call `start_metrics_server(port)` once in a process to expose /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram, Gauge, start_http_server


# MessageBox production
MESSAGEBOX_PUBLISHED_TOTAL = Counter(
    "messagebox_published_total", "Total publish attempts into the MessageBox", ["interface", "result"]
)
MESSAGEBOX_SUBSCRIPTIONS_CREATED_TOTAL = Counter(
    "messagebox_subscriptions_created_total", "Total subscription rows created at publish time"
)
MESSAGEBOX_DEDUPLICATED_TOTAL = Counter(
    "messagebox_deduplicated_total", "Total publishes answered with an existing message id"
)
RECORDS_REJECTED_TOTAL = Counter(
    "records_rejected_total", "Total records rejected by validation before publish", ["interface"]
)

# Distribution
SUBSCRIPTION_ACK_TOTAL = Counter(
    "subscription_ack_total",
    "Total subscription acknowledgements",
    ["status", "result"],  # result: applied | ignored
)
DESTINATION_PROCESS_LATENCY_SECONDS = Histogram(
    "destination_process_latency_seconds",
    "Time for a destination handler to process a single message",
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5),
)
DESTINATION_IN_FLIGHT = Gauge(
    "destination_in_flight", "Messages currently being processed by a destination worker", ["instance"]
)

# Garbage collection
MESSAGEBOX_SWEPT_TOTAL = Counter(
    "messagebox_swept_total", "Total messages deleted by the garbage-collection sweep"
)
SWEEP_DURATION_SECONDS = Histogram(
    "sweep_duration_seconds",
    "Time taken by one garbage-collection sweep",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2),
)

# Orchestration
PROVISIONING_TOTAL = Counter(
    "provisioning_total",
    "Total compute unit ensure outcomes",
    ["result"],  # existing | created | converged | failed
)

# Process log
PROCESS_LOG_EVICTED_TOTAL = Counter(
    "process_log_evicted_total", "Total process log entries evicted from the ring buffer"
)


def start_metrics_server(port: int = 9000) -> None:
    start_http_server(port)
