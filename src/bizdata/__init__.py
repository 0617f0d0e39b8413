"""Business data service with account-scoped records."""

from .api import create_app

__all__ = ["create_app"]
