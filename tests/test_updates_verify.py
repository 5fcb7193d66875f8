"""
Tests for payload integrity verification.
"""

from __future__ import annotations

import hashlib

import pytest

from vtbeta_helper.errors import IntegrityMismatchError
from vtbeta_helper.updates.verify import compute_sha256, verify_digest

PAYLOAD = b"vertical tabs build payload"
DIGEST = hashlib.sha256(PAYLOAD).hexdigest()


class TestVerifyDigest:
    """Tests for verify_digest."""

    def test_matching_digest(self) -> None:
        """Test a matching digest passes."""
        verify_digest(PAYLOAD, DIGEST)

    def test_digest_is_normalized(self) -> None:
        """Test upper case and surrounding whitespace are tolerated."""
        verify_digest(PAYLOAD, f"  {DIGEST.upper()}\n")

    def test_mismatch_raises(self) -> None:
        """Test a wrong digest raises IntegrityMismatchError."""
        with pytest.raises(IntegrityMismatchError) as exc_info:
            verify_digest(PAYLOAD + b"!", DIGEST)

        assert exc_info.value.details["expected_sha256"] == DIGEST

    def test_non_hex_digest_raises(self) -> None:
        """Test garbage digests fail cleanly."""
        with pytest.raises(IntegrityMismatchError):
            verify_digest(PAYLOAD, "not-a-digest-é")

    def test_compute_sha256(self) -> None:
        """Test the digest is lowercase hex."""
        assert compute_sha256(PAYLOAD) == DIGEST
        assert compute_sha256(PAYLOAD) == compute_sha256(PAYLOAD).lower()
