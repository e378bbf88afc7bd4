"""Error taxonomy shared by the gateway, the core and the HTTP shell."""
from __future__ import annotations

from typing import Any, Dict


class ProxyError(Exception):
    """Base class; `status_code` is the HTTP status the shell responds with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> Dict[str, Any]:
        return {'error': self.message}


class UpstreamUnavailable(ProxyError):
    """Network error, timeout, or open circuit breaker."""


class UpstreamRejected(ProxyError):
    """Upstream answered with a non-success status or an API-level error code."""

    def __init__(self, status_code: int, body: Any, message: str | None = None):
        super().__init__(message or f"Upstream rejected request with status {status_code}")
        self.upstream_status = status_code
        self.body = body
        # 2xx envelopes carrying an error code are reported as a bad gateway
        self.status_code = status_code if 400 <= status_code < 600 else 502

    def payload(self) -> Dict[str, Any]:
        return {
            'error': self.message,
            'upstream_status': self.upstream_status,
            'details': self.body,
        }


class InvalidRequest(ProxyError):
    status_code = 400


class NotFoundInCache(ProxyError):
    status_code = 404


class ComputationError(ProxyError, ArithmeticError):
    """A derived value (variation, spike metric) is undefined for its inputs."""


__all__ = [
    'ProxyError', 'UpstreamUnavailable', 'UpstreamRejected',
    'InvalidRequest', 'NotFoundInCache', 'ComputationError',
]
