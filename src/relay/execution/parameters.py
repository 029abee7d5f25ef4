"""Flow parameter builders.

The orchestrator owns a set of reserved keys per run kind.  User-supplied
parameters are merged in first and the reserved values are written last,
so a caller can never redirect a callback or impersonate another run.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

NODE_RESERVED_KEYS = frozenset({
    "run_id",
    "node_id",
    "workflow_key",
    "source_doc_ids",
    "callback_url",
    "base_url",
    "target_docs",
})

DOCUMENT_RESERVED_KEYS = frozenset({
    "run_id",
    "document_id",
    "document_type",
    "workflow_key",
    "callback_url",
    "base_url",
})

PROCESSING_RESERVED_KEYS = frozenset({
    "doc_path",
    "dry_run",
    "callback_url",
    "base_url",
    "api_key",
    "llm_base_url",
})


def callback_url(base_url: str, api_prefix: str, path: str) -> str:
    """Join the public base URL, the API prefix and a callback path."""
    return f"{base_url.rstrip('/')}{api_prefix.rstrip('/')}/{path.lstrip('/')}"


def merge_parameters(
    reserved: Mapping[str, Any],
    user: Mapping[str, Any] | None,
    reserved_keys: Iterable[str],
) -> dict[str, Any]:
    """User parameters minus reserved keys, overlaid with the reserved values."""
    blocked = frozenset(reserved_keys)
    merged = {k: v for k, v in (user or {}).items() if k not in blocked}
    merged.update(reserved)
    return merged


def node_parameters(
    *,
    run_id: str,
    node_id: int,
    workflow_key: str,
    source_doc_ids: list[int],
    target_docs: list[dict[str, Any]],
    callback: str,
    base_url: str,
    user: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    reserved = {
        "run_id": run_id,
        "node_id": node_id,
        "workflow_key": workflow_key,
        "source_doc_ids": list(source_doc_ids),
        "target_docs": list(target_docs),
        "callback_url": callback,
        "base_url": base_url,
    }
    return merge_parameters(reserved, user, NODE_RESERVED_KEYS)


def document_parameters(
    *,
    run_id: str,
    document_id: int,
    document_type: str,
    workflow_key: str,
    callback: str,
    base_url: str,
    user: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    reserved = {
        "run_id": run_id,
        "document_id": document_id,
        "document_type": document_type,
        "workflow_key": workflow_key,
        "callback_url": callback,
        "base_url": base_url,
    }
    return merge_parameters(reserved, user, DOCUMENT_RESERVED_KEYS)


def processing_parameters(
    *,
    document_id: int,
    dry_run: bool,
    callback: str,
    base_url: str,
    api_key: str | None = None,
    llm_base_url: str | None = None,
    user: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    reserved: dict[str, Any] = {
        "doc_path": f"@doc:{document_id}",
        "dry_run": dry_run,
        "callback_url": callback,
        "base_url": base_url,
    }
    if api_key:
        reserved["api_key"] = api_key
    if llm_base_url:
        reserved["llm_base_url"] = llm_base_url
    return merge_parameters(reserved, user, PROCESSING_RESERVED_KEYS)
