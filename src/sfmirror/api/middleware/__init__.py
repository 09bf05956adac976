"""API middleware package."""

from src.sfmirror.api.middleware.logging import LoggingMiddleware

__all__ = ["LoggingMiddleware"]
