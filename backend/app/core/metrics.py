from prometheus_client import (
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Job counters
# ---------------------------------------------------------------------------
image_jobs_total = Counter(
    "image_jobs_total",
    "Total number of image extraction jobs",
    ["status"],
)
images_returned_total = Counter(
    "images_returned_total",
    "Total number of images returned by completed jobs",
)
candidates_total = Counter(
    "candidates_total",
    "Image candidates by dedup / quality outcome",
    ["outcome"],
)

# ---------------------------------------------------------------------------
# Collaborator counters
# ---------------------------------------------------------------------------
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook deliveries by event and final status",
    ["event", "status"],
)
page_cache_total = Counter(
    "page_cache_total",
    "Homepage cache lookups by result",
    ["result"],
)

# ---------------------------------------------------------------------------
# Histograms
# ---------------------------------------------------------------------------
image_job_duration_seconds = Histogram(
    "image_job_duration_seconds",
    "End-to-end duration of an image extraction job",
    buckets=[1, 2, 5, 10, 20, 30, 60, 120, 300],
)
pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Time spent in each pipeline stage",
    ["stage"],
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
