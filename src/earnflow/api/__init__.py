"""Operational HTTP API."""

from earnflow.api.router import api_router

__all__ = ["api_router"]
