"""
Prometheus metrics for the sync layer.
"""

from prometheus_client import Counter, Gauge, Histogram

fetch_resolutions = Counter(
    "portal_fetch_resolutions_total",
    "Collection loads by the fallback tier that served them",
    ["resource", "collection", "tier"],
)

mutations = Counter(
    "portal_mutations_total",
    "Mutations by outcome",
    ["resource", "action", "outcome"],
)

refresh_duration = Histogram(
    "portal_refresh_seconds",
    "Time spent reloading a resource store",
    ["resource"],
)

degraded_stores = Gauge(
    "portal_degraded_stores",
    "Open stores currently serving seed data",
)
