"""Prometheus metrics for reconciliation passes."""
from prometheus_client import Counter, Histogram

PASSES = Counter(
    "cluster_template_operator_passes_total",
    "Reconciliation passes by outcome",
    ["outcome"],
)

PASS_DURATION = Histogram(
    "cluster_template_operator_pass_duration_seconds",
    "Wall time of one reconciliation pass",
)
