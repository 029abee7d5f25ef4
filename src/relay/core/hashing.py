"""
Deterministic hashing and the idempotency keyer.

Provides stable, reproducible hash functions used to deduplicate
content-addressed submissions.  Document pipelines are idempotent by
content: the same document version run through the same pipeline with the
same dry-run flag must map to one processing job, no matter how many times
the trigger is called.

Manifesto:
    - **Deterministic:** Same inputs always produce same key
    - **Order-dependent:** (a, b) ≠ (b, a)
    - **Collision-resistant:** SHA-256 over a canonical tuple

Architecture:
    ::

        idempotency_key(document_id, version, pipeline, dry_run)
            ↓
        canonical tuple  "42:7:polish_document:false"
            ↓
        sha256 → hex[:32]  (128 bits)
            ↓
        processing_jobs.idempotency_key  (UNIQUE)

    Node workflow runs and batches are explicit user actions and are never
    keyed; every trigger creates a new run.

Examples:
    >>> k1 = idempotency_key(42, 7, "polish_document", False)
    >>> k2 = idempotency_key(42, 7, "polish_document", False)
    >>> k1 == k2
    True
    >>> idempotency_key(42, 7, "polish_document", True) == k1
    False

Tags:
    hashing, deduplication, idempotency, relay

Doc-Types:
    - API Reference
"""

import hashlib
import json
from typing import Any


def compute_hash(*values: Any, length: int = 32) -> str:
    """
    Compute deterministic hash from values.

    Joins string representations of all values with ``|`` and returns the
    SHA-256 hex digest truncated to ``length`` characters.

    Args:
        *values: Values to hash (converted to strings)
        length: Hex digest length (default 32 = 128 bits)

    Returns:
        Hex string of specified length
    """
    content = "|".join(str(v) for v in values)
    return hashlib.sha256(content.encode()).hexdigest()[:length]


def idempotency_key(
    target_id: int | str,
    target_version: int | str,
    operation: str,
    dry_run: bool,
) -> str:
    """Derive the idempotency key for a content-addressed submission.

    The flag is rendered as ``true``/``false`` so the canonical tuple is
    stable across callers that pass ``0``/``1`` or booleans.
    """
    flag = "true" if dry_run else "false"
    content = f"{target_id}:{target_version}:{operation}:{flag}"
    return hashlib.sha256(content.encode()).hexdigest()[:32]


def spec_hash(payload: dict[str, Any]) -> str:
    """Hash a JSON-serialisable mapping independent of key order."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
