"""Pesaflow HTTP API: storefront checkout and gateway callback endpoints."""

from .main import API_VERSION, create_app

__all__ = ["API_VERSION", "create_app"]
