"""
Content hashing for upload deduplication (CRITICAL).

This module defines THE deterministic content hash of an uploaded
statement file. It is the ONLY way import dedupe keys are generated.

The hash must be:
- Stable: Same bytes always produce the same digest
- Order-sensitive: Reordered lines are a different file
- Format-agnostic: Computed over raw bytes, before any decoding

Near-duplicates (re-exported files that differ by a single byte) are
deliberately NOT detected here.
"""

import hashlib
import re

# Length of a hex-encoded SHA256 digest
HASH_LENGTH = 64

_HEX_DIGEST = re.compile(rf"^[0-9a-f]{{{HASH_LENGTH}}}$")


def compute_file_hash(file_bytes: bytes) -> str:
    """
    Compute SHA256 hash of file bytes.

    Args:
        file_bytes: Raw file content

    Returns:
        64-character lowercase hex string
    """
    return hashlib.sha256(file_bytes).hexdigest()


def is_valid_file_hash(value: str | None) -> bool:
    """Check that value looks like a digest produced by compute_file_hash."""
    if not value:
        return False
    return bool(_HEX_DIGEST.match(value))


def short_hash(file_hash: str, length: int = 12) -> str:
    """Abbreviated digest for log lines and CLI output."""
    return file_hash[:length]
