"""
Prometheus Metrics
Counters for the learning core, collected in a dedicated registry.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest, CONTENT_TYPE_LATEST

# Create a global registry for metrics
metrics_registry = CollectorRegistry()

traces_recorded_total = Counter(
    'reasonbank_traces_recorded_total',
    'Total reasoning traces recorded',
    ['outcome'],
    registry=metrics_registry
)

patterns_upserted_total = Counter(
    'reasonbank_patterns_upserted_total',
    'Total pattern upserts',
    ['domain', 'created'],
    registry=metrics_registry
)

feedback_applied_total = Counter(
    'reasonbank_feedback_applied_total',
    'Total feedback records stored',
    ['matched'],
    registry=metrics_registry
)

store_retries_total = Counter(
    'reasonbank_store_retries_total',
    'Store operations retried after a transient fault',
    ['operation'],
    registry=metrics_registry
)

store_failures_total = Counter(
    'reasonbank_store_failures_total',
    'Store operations that failed permanently or exhausted retries',
    ['operation', 'kind'],
    registry=metrics_registry
)

spikes_fired_total = Counter(
    'reasonbank_spikes_fired_total',
    'Total pattern spikes fired (source and propagated)',
    registry=metrics_registry
)

duplicate_traces_total = Counter(
    'reasonbank_duplicate_traces_total',
    'Trace deliveries ignored because the trace id was already recorded',
    registry=metrics_registry
)

patterns_skipped_total = Counter(
    'reasonbank_patterns_skipped_total',
    'Successful traces that produced no pattern',
    ['reason'],
    registry=metrics_registry
)

partitions_computed_total = Counter(
    'reasonbank_partitions_computed_total',
    'Min-cut partitionings persisted',
    registry=metrics_registry
)


def render_metrics() -> tuple[bytes, str]:
    """Return the exposition payload and its content type."""
    return generate_latest(metrics_registry), CONTENT_TYPE_LATEST
