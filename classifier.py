SLOW_MS = 5000
VERY_SLOW_MS = 10000


def classify_latency(load_time_ms):
    if load_time_ms > VERY_SLOW_MS:
        return "error"
    if load_time_ms > SLOW_MS:
        return "warning"
    return "up"


def classify_http_code(code):
    if 200 <= code < 400:
        return "up"
    return "warning"


def aggregate_status(statuses):
    """Fold the latest check statuses into a site status: error > warning > ok."""
    statuses = list(statuses)
    if any(s in ("error", "down") for s in statuses):
        return "error"
    if any(s == "warning" for s in statuses):
        return "inactive"
    return "active"
