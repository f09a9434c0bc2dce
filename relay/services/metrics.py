from prometheus_client import Counter

relay_requests = Counter("relay_requests_total", "relay requests by route and outcome", ["route", "outcome"])
relay_ad_markers_stripped = Counter("relay_ad_markers_stripped_total", "advertisement marker lines removed from manifests")
relay_auth_fallbacks = Counter("relay_auth_fallbacks_total", "authorization attempts retried with the alternate client context")


def record_request(route: str, outcome: str):
    """Count one finished request; outcome is "ok" or the error class name."""
    relay_requests.labels(route=route, outcome=outcome).inc()
