"""
Persisted local state read and written by data migrations.
"""

from vtbeta_helper.storage.local import LocalStorage, find_view_state_keys
from vtbeta_helper.storage.metadata import GroupMetadata, MetadataStore

__all__ = [
    "LocalStorage",
    "find_view_state_keys",
    "GroupMetadata",
    "MetadataStore",
]
