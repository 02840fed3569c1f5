"""
Middleware package for the MindScan API.
"""

from .logging_middleware import RequestLoggingMiddleware

__all__ = [
    "RequestLoggingMiddleware",
]
