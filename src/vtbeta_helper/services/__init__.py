"""
Account and build services built on the API client.
"""

from vtbeta_helper.services.auth import (
    TokenValidation,
    normalize_token,
    refresh_subscription,
    validate_token,
)
from vtbeta_helper.services.builds import get_latest_build, list_builds
from vtbeta_helper.services.cache import BuildCache

__all__ = [
    "TokenValidation",
    "normalize_token",
    "refresh_subscription",
    "validate_token",
    "get_latest_build",
    "list_builds",
    "BuildCache",
]
