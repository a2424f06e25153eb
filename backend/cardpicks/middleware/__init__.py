from __future__ import annotations

from .access_log import AccessLogMiddleware
from .request_context import RequestContextMiddleware
from .security_headers import SecurityHeadersMiddleware

__all__ = ["AccessLogMiddleware", "RequestContextMiddleware", "SecurityHeadersMiddleware"]
