from prometheus_client import Counter, Gauge, Histogram

VUS_ACTIVE = Gauge(
    "botload_vus_active",
    "Current number of running virtual users",
)

ITERATIONS_TOTAL = Counter(
    "botload_iterations_total",
    "Total iterations executed by virtual users",
    ["result"],
)

ITERATION_DURATION = Histogram(
    "botload_iteration_duration_seconds",
    "Iteration duration in seconds, think time excluded",
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

THRESHOLD_BREACHES_TOTAL = Counter(
    "botload_threshold_breaches_total",
    "Threshold evaluations that failed",
    ["metric"],
)

BOT_MESSAGES_TOTAL = Counter(
    "mock_bot_messages_total",
    "Total activities received by the mock bot",
    ["result"],
)
