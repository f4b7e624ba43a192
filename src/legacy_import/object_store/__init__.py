"""
Object storage for attachment bytes, snapshots and exports.

Provides:
- ObjectStore: put/get/exists/list/delete interface
- LocalObjectStore: filesystem backend
- HttpObjectStore: blob API client (requests + retry)
- build_object_store: backend selection from config
"""

from ..config import ObjectStoreConfig
from .base import (
    ObjectNotFound,
    ObjectStore,
    ObjectStoreError,
    document_key,
    documents_prefix,
    export_key,
    key_timestamp,
    snapshot_key,
)
from .http import HttpObjectStore, ObjectStoreAPIError, ObjectStoreConnectionError
from .local import LocalObjectStore


def build_object_store(config: ObjectStoreConfig) -> ObjectStore:
    """Create the configured object store backend."""
    if config.backend == "http":
        if not config.base_url:
            raise ObjectStoreError("object_store.base_url is required for the http backend")
        return HttpObjectStore(
            base_url=config.base_url,
            token=config.token,
            timeout=config.timeout_seconds,
            max_retries=config.max_retries,
        )
    return LocalObjectStore(config.root)


__all__ = [
    "HttpObjectStore",
    "LocalObjectStore",
    "ObjectNotFound",
    "ObjectStore",
    "ObjectStoreAPIError",
    "ObjectStoreConnectionError",
    "ObjectStoreError",
    "build_object_store",
    "document_key",
    "documents_prefix",
    "export_key",
    "key_timestamp",
    "snapshot_key",
]
