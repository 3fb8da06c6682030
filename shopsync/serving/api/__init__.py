"""
API Module
"""
from .auth import CurrentUser, create_access_token, get_current_user
from .middleware import RateLimitMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware

__all__ = [
    "CurrentUser",
    "create_access_token",
    "get_current_user",
    "RequestLoggingMiddleware",
    "RateLimitMiddleware",
    "SecurityHeadersMiddleware",
]
