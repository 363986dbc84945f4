from prometheus_client import Counter, Histogram, Gauge, REGISTRY


# we check if they are already registered to avoid errors during hot reloads or test runs
def get_or_create_metric(name, documentation, metric_type, **kwargs):
    try:
        return metric_type(name, documentation, **kwargs)
    except ValueError:
        # Counters register under "<name>_total" as well as the base name
        return REGISTRY._names_to_collectors.get(
            name, REGISTRY._names_to_collectors.get(f"{name}_total")
        )


REQUESTS_TOTAL = get_or_create_metric(
    "renovation_requests_total",
    "Total requests",
    Counter,
    labelnames=["endpoint", "status"],
)

REQUEST_LATENCY_SECONDS = get_or_create_metric(
    "renovation_request_latency_seconds",
    "Request latency",
    Histogram,
    labelnames=["endpoint"],
)

STAGE_ITEMS_TOTAL = get_or_create_metric(
    "renovation_stage_items_total",
    "Pipeline items handled per stage and outcome",
    Counter,
    labelnames=["stage", "outcome"],
)

STAGE_DURATION_SECONDS = get_or_create_metric(
    "renovation_stage_duration_seconds",
    "Wall time of one pipeline stage run",
    Histogram,
    labelnames=["stage"],
)

SMS_TOTAL = get_or_create_metric(
    "renovation_sms_total",
    "Outbound contractor messages",
    Counter,
    labelnames=["kind", "status"],
)

REPLIES_TOTAL = get_or_create_metric(
    "renovation_replies_total",
    "Inbound contractor replies by parsed outcome",
    Counter,
    labelnames=["outcome"],
)

QUEUE_DEPTH = get_or_create_metric(
    "renovation_queue_depth", "Pending pipeline jobs", Gauge
)
