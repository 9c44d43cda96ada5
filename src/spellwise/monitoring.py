"""Monitoring configuration for the engine."""
from prometheus_client import Counter, Histogram, start_http_server

# Session metrics
sessions_folded = Counter(
    "spellwise_sessions_folded_total",
    "Total number of sealed sessions folded into progress records",
)

sessions_rejected = Counter(
    "spellwise_sessions_rejected_total",
    "Total number of sessions rejected before folding",
    ["reason"],
)

fold_duration = Histogram(
    "spellwise_fold_duration_seconds",
    "Duration of a session fold including persistence",
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
)

# Word library metrics
lookup_gaps = Counter(
    "spellwise_lookup_gaps_total",
    "Total number of attempted words missing from the word library",
)

# Struggle metrics
struggle_words_added = Counter(
    "spellwise_struggle_words_added_total",
    "Total number of words added to struggle sets",
)

struggle_words_retired = Counter(
    "spellwise_struggle_words_retired_total",
    "Total number of words retired from struggle sets",
)

# Merge metrics
merges = Counter(
    "spellwise_merges_total",
    "Total number of anonymous-to-account merges",
    ["outcome"],
)

# Store metrics
store_conflicts = Counter(
    "spellwise_store_conflicts_total",
    "Total number of compare-and-set conflicts on progress records",
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
