"""
Client for the build service API.
"""

from vtbeta_helper.api.client import ApiService, classify_status
from vtbeta_helper.api.models import (
    BuildData,
    BuildPage,
    DownloadedBuild,
    PendingJob,
    Subscription,
)

__all__ = [
    "ApiService",
    "classify_status",
    "BuildData",
    "BuildPage",
    "DownloadedBuild",
    "PendingJob",
    "Subscription",
]
