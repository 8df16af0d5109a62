"""Encrypted-object storage engine.

This package provides the storage layer for pre-encrypted objects with:
- StorageEngine orchestrating uploads to the primary region
- Pluggable backends (S3/MinIO, Google Cloud Storage, in-memory)
- Lossless compression and checksum-based deduplication
- Background replication and backup with bounded retries
- Event bus feeding aggregated metrics, Prometheus and OpenTelemetry

Quick Start:
    from vault_service.core.settings import get_vault_settings
    from vault_service.infra.storage import StorageEngine, StoredObjectRequest

    async with StorageEngine(get_vault_settings()) as engine:
        result = await engine.store_encrypted_object(
            StoredObjectRequest(
                object_id="doc-1",
                object_key="users/42/doc-1.bin",
                wrapped_dek=wrapped_key,
                ciphertext_b64=ciphertext,
                iv_b64=iv,
                tag_b64=tag,
            )
        )
        print(result.checksum, result.replication_status)
"""

from __future__ import annotations

# Backends
from .backends import InMemoryBackend, PutResult, StorageBackend, create_storage_backend

# Backup and replication
from .backup import BackupScheduler
from .catalog import ObjectCatalog

# Core engine
from .engine import StorageEngine

# Events
from .events import EventBus, MetricsAggregator

# Exceptions
from .exceptions import (
    BackendError,
    BackendUnavailableError,
    IntegrityFailureError,
    NotReadyError,
    StorageError,
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    StoragePermissionError,
    StorageTimeoutError,
    StorageValidationError,
)

# Models
from .models import (
    CopyStatus,
    EnhancedStorageResult,
    ObjectStatus,
    StorageEvent,
    StorageEventType,
    StorageMetrics,
    StorageResultMetadata,
    StoredObjectRequest,
)

# Optimization
from .optimizer import (
    CompressionCodec,
    ContentOptimizer,
    DeduplicationIndex,
    DeflateCodec,
    InMemoryDeduplicationIndex,
    compute_checksum,
)
from .regions import RegionRegistry, validate_configuration
from .replication import ReplicationScheduler

__all__ = [
    # Core engine
    "StorageEngine",
    "compute_checksum",
    # Regions
    "RegionRegistry",
    "validate_configuration",
    # Backends
    "StorageBackend",
    "PutResult",
    "InMemoryBackend",
    "create_storage_backend",
    # Exceptions
    "StorageError",
    "StorageNotConfiguredError",
    "NotReadyError",
    "IntegrityFailureError",
    "BackendError",
    "BackendUnavailableError",
    "StorageTimeoutError",
    "StorageFileNotFoundError",
    "StoragePermissionError",
    "StorageValidationError",
    # Models
    "StoredObjectRequest",
    "EnhancedStorageResult",
    "StorageResultMetadata",
    "StorageEvent",
    "StorageEventType",
    "StorageMetrics",
    "ObjectStatus",
    "CopyStatus",
    # Optimization
    "CompressionCodec",
    "ContentOptimizer",
    "DeflateCodec",
    "DeduplicationIndex",
    "InMemoryDeduplicationIndex",
    # Events
    "EventBus",
    "MetricsAggregator",
    # Catalogue and schedulers
    "ObjectCatalog",
    "ReplicationScheduler",
    "BackupScheduler",
]
