"""ASGI middleware for the Explainer Relay."""

from .correlation import CorrelationMiddleware

__all__ = ["CorrelationMiddleware"]
