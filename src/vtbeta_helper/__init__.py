"""
Vertical Tabs beta helper - self-updater for beta builds of a host plugin.

This package downloads versioned beta builds, verifies their integrity,
swaps them atomically into the host's plugin folder with rollback on
failure, and runs the data migrations a version transition requires.
"""

__version__ = "0.3.0"
