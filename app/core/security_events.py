"""Security event sink.

Authentication failures, rejected tokens and throttled requests are
reported here rather than through each module's own logger so they
land on one logger (``security``) that operators can route separately.

Callers must never put raw tokens or passwords into ``details``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class SecurityEventSink(Protocol):
    def log(self, event: str, details: dict[str, Any] | None = None) -> None: ...


class LoggingSecurityEventSink:
    """Writes each event as a WARNING on the ``security`` logger.

    ``event`` and ``details`` are attached as record attributes, which the
    JSON formatter promotes to top-level keys.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("security")

    def log(self, event: str, details: dict[str, Any] | None = None) -> None:
        details = dict(details or {})
        self._logger.warning(
            "%s %s",
            event,
            " ".join(f"{k}={v}" for k, v in sorted(details.items())),
            extra={
                "event": event,
                "details": details,
                "client_ip": details.get("ip"),
                "user_id": details.get("user_id"),
            },
        )


security_events: SecurityEventSink = LoggingSecurityEventSink()
