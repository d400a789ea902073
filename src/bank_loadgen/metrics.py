from prometheus_client import Counter, Gauge, Histogram

from bank_loadgen.aggregator import MetricsSink, Sample

REQUESTS_TOTAL = Counter(
    "loadgen_http_requests_total",
    "Total HTTP requests sent to the target API",
    ["operation", "result"],
)

REQUEST_DURATION = Histogram(
    "loadgen_http_request_duration_seconds",
    "HTTP request duration in seconds as seen by the load generator",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 0.8, 1.0, 3.0, 10.0],
)

ACTIVE_VUS = Gauge(
    "loadgen_active_vus",
    "Virtual users currently running iterations",
    ["scenario"],
)

POOL_SIZE = Gauge(
    "loadgen_identity_pool_size",
    "Provisioned identities available to virtual users",
)

ITERATIONS_TOTAL = Counter(
    "loadgen_iterations_total",
    "Completed virtual user iterations",
    ["scenario"],
)


def record_http_call(sink: MetricsSink, operation: str, status: int, latency: float, success: bool) -> None:
    tags = {"operation": str(operation), "status": str(status)}
    sink.record(Sample("http_req_duration", latency * 1000, tags))
    sink.record(Sample("http_req_failed", 0.0 if success else 1.0, tags))
    sink.record(Sample("http_reqs", 1.0, tags))
    REQUESTS_TOTAL.labels(operation=str(operation), result="success" if success else "failure").inc()
    REQUEST_DURATION.labels(operation=str(operation)).observe(latency)
