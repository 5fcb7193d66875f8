"""
Integrity verification for downloaded builds.
"""

from __future__ import annotations

import hashlib
import hmac

from vtbeta_helper.errors import IntegrityMismatchError
from vtbeta_helper.logging import get_logger

logger = get_logger(__name__)


def compute_sha256(payload: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of a payload."""
    return hashlib.sha256(payload).hexdigest()


def verify_digest(payload: bytes, expected_sha256: str) -> None:
    """
    Check a payload against the digest advertised by the server.

    Args:
        payload: Full downloaded bytes.
        expected_sha256: Hex-encoded SHA-256 digest.

    Raises:
        IntegrityMismatchError: If the digests differ.
    """
    actual = compute_sha256(payload)
    expected = expected_sha256.strip().lower()

    if not hmac.compare_digest(actual.encode(), expected.encode()):
        logger.error(
            "Integrity check failed",
            extra={"expected_sha256": expected, "actual_sha256": actual},
        )
        raise IntegrityMismatchError(
            "File integrity check failed. The download may be corrupted.",
            details={"expected_sha256": expected, "actual_sha256": actual},
        )

    logger.debug("Integrity check passed", extra={"sha256": actual})
