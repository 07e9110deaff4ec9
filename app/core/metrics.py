"""Prometheus metrics, defined in one place.

Other modules import the metric they own and increment it at the point
of action.  Counters only go up, so tests assert on deltas.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Credential layer
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["key_type"],  # "user" or "ip"
)

TOKEN_REVOCATION_CHECKS = Counter(
    "token_revocation_checks_total",
    "Token revocation registry lookups by result",
    ["result"],  # "revoked" or "valid"
)

TOKEN_VERIFICATIONS = Counter(
    "token_verifications_total",
    "JWT verifications by token class and outcome",
    # token_class: access|refresh|reset
    # result: accepted|expired|malformed|invalid_signature|invalid_claims
    ["token_class", "result"],
)

# ---------------------------------------------------------------------------
# Certificate lifecycle
# ---------------------------------------------------------------------------

CERTIFICATE_TRANSITIONS = Counter(
    "certificate_transitions_total",
    "Certificate lifecycle operations that changed state",
    ["action"],  # create|update|issue|revoke|delete
)

CERTIFICATE_VERIFICATIONS = Counter(
    "certificate_verifications_total",
    "Public certificate verifications by outcome",
    ["result"],  # valid|not_found|revoked|not_issued|expired|error
)
