from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

REQUESTS_TOTAL = Counter(
    "subgate_requests_total",
    "Total gateway requests by terminal outcome",
    ["outcome", "status"],
)
AUTH_BANS_TOTAL = Counter("subgate_auth_bans_total", "Total bans issued for repeated auth failures")
TRAFFIC_FETCH_FAILURES_TOTAL = Counter(
    "subgate_traffic_fetch_failures_total",
    "Total usage fetches that produced no usage header",
    ["reason"],
)
LIMITER_RECORDS = Gauge("subgate_limiter_records", "Live window records per limiter", ["limiter"])


__all__ = [
    "CONTENT_TYPE_LATEST",
    "REQUESTS_TOTAL",
    "AUTH_BANS_TOTAL",
    "TRAFFIC_FETCH_FAILURES_TOTAL",
    "LIMITER_RECORDS",
    "generate_latest",
]
