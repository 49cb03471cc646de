"""
Settings access shared by the route handlers and the client factories.
"""

from functools import lru_cache

from payhook.core.config import AppSettings, get_settings


@lru_cache()
def get_app_settings() -> AppSettings:
    """Process-wide settings; routes override this in tests."""
    return get_settings()


__all__ = ["get_app_settings"]
