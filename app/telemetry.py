from prometheus_client import Counter, Gauge, Histogram

# HTTP request metrics
HTTP_REQUESTS_TOTAL = Counter(
    "salesai_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "salesai_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)

# Analysis pipeline
ANALYSIS_RUNS_TOTAL = Counter(
    "salesai_analysis_runs_total",
    "Analysis runs by outcome",
    ["outcome", "domain"],
)
ANALYSIS_SECONDS = Histogram(
    "salesai_analysis_seconds",
    "Duration of an analysis run in seconds",
    ["domain"],
)
PROVIDER_ERRORS_TOTAL = Counter(
    "salesai_analysis_provider_errors_total",
    "Analysis provider failures absorbed by the mock fallback",
    ["provider", "reason"],
)
PERSIST_FAILURES_TOTAL = Counter(
    "salesai_persist_failures_total",
    "Best-effort store writes that failed",
    ["record"],
)

# Lifecycle
SESSIONS_STARTED_TOTAL = Counter(
    "salesai_sessions_started_total",
    "Sessions started by domain",
    ["domain"],
)
SESSIONS_ENDED_TOTAL = Counter(
    "salesai_sessions_ended_total",
    "Session end events by domain and outcome",
    ["domain", "outcome"],
)

# Background analysis tasks
ANALYSIS_TASKS_TOTAL = Counter(
    "salesai_analysis_tasks_total",
    "Background analysis task outcomes",
    ["status"],
)
ANALYSIS_QUEUE_DEPTH = Gauge(
    "salesai_analysis_queue_depth",
    "Background analysis queue depth",
)
