from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, generate_latest

TUNNEL_CONNECTIONS = Counter(
    "vlessgate_connections_total",
    "Total tunnel connections by final result",
    ["result"],  # result: closed/failed/rejected
)

RELAY_ATTEMPTS = Counter(
    "vlessgate_attempts_total",
    "Destination attempts by outcome",
    ["result"],
)

DECODE_ERRORS = Counter(
    "vlessgate_decode_errors_total",
    "Rejected request headers",
    ["kind"],
)

FALLBACKS = Counter(
    "vlessgate_fallbacks_total",
    "Attempts made against a fallback candidate",
)

BYTES_TRANSFERRED = Counter(
    "vlessgate_bytes_total",
    "Payload bytes relayed",
    ["direction"],  # direction: upstream/downstream
)

ACTIVE_SESSIONS = Gauge(
    "vlessgate_active_sessions",
    "Current tunnel sessions",
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
