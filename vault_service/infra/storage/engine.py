"""Encrypted-object storage engine.

This module provides the main interface for storing pre-encrypted objects:
- Single-flight initialization with fatal configuration validation
- Synchronous primary upload with timeout and bounded retry
- Content optimization (compression, deduplication) before upload
- Asynchronous replication and backup through background schedulers
- Event-driven metrics with Prometheus and OpenTelemetry instrumentation

The engine is constructed explicitly and passed to whoever needs it.

Example:
    settings = get_vault_settings()
    async with StorageEngine(settings) as engine:
        result = await engine.store_encrypted_object(request)
        data = await engine.retrieve_encrypted_object(result.object_key)
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import UTC, datetime
import logging
import time
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from vault_service.core.exceptions import ConfigError
from vault_service.core.settings import get_vault_settings
from vault_service.utils.retry import RetryError, retry

from .backends.factory import create_storage_backends
from .backup import BackupScheduler
from .catalog import ObjectCatalog, catalog_id
from .events import EventBus, MetricsAggregator, log_event, prometheus_event_handler
from .exceptions import (
    BackendError,
    BackendUnavailableError,
    IntegrityFailureError,
    NotReadyError,
    StorageError,
    StorageFileNotFoundError,
    StorageNotConfiguredError,
    StorageTimeoutError,
)
from .instrumentation import track_storage_operation
from .metrics import record_backend_health
from .models import (
    EnhancedStorageResult,
    ObjectRecord,
    ObjectStatus,
    StorageEvent,
    StorageEventType,
    StorageResultMetadata,
)
from .optimizer import (
    ContentOptimizer,
    DedupLocation,
    OptimizedPayload,
    compute_checksum,
    decode_reference,
)
from .regions import RegionRegistry, validate_configuration
from .replication import ReplicationScheduler

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from types import TracebackType

    from vault_service.core.settings.vault import StorageProvider, StorageRegion, VaultSettings

    from .backends.protocol import StorageBackend
    from .models import StorageMetrics, StoredObjectRequest
    from .optimizer import CompressionCodec, DeduplicationIndex

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Content moved out of the way of an overwrite
RELOCATED_PREFIX = ".vault/relocated"


class StorageEngine:
    """Orchestrates storage of encrypted objects across regions.

    Args:
        settings: Engine settings (defaults to ``get_vault_settings()``)
        backends: Backend per provider family; built by the factory when omitted
        codec: Compression codec for new objects
        dedup_index: Checksum to location index for deduplication
        bus: Event bus; a private one is created when omitted
        background_jobs: Start the periodic replication, backup and
            metrics jobs on initialization

    Example:
        engine = StorageEngine(settings)
        await engine.initialize()
        result = await engine.store_encrypted_object(request)
        await engine.stop()
    """

    def __init__(
        self,
        settings: VaultSettings | None = None,
        *,
        backends: Mapping[StorageProvider, StorageBackend] | None = None,
        codec: CompressionCodec | None = None,
        dedup_index: DeduplicationIndex | None = None,
        bus: EventBus | None = None,
        background_jobs: bool = True,
    ) -> None:
        self.settings = settings or get_vault_settings()
        self.registry = RegionRegistry(self.settings)
        self.catalog = ObjectCatalog()

        self.bus = bus or EventBus(log_size=self.settings.event_log_size)
        self._metrics = MetricsAggregator()
        self.bus.subscribe(self._metrics)
        self.bus.subscribe(prometheus_event_handler)
        self.bus.subscribe(log_event)

        self.optimizer = ContentOptimizer(
            compression=self.settings.optimization.compression,
            deduplication=self.settings.optimization.deduplication,
            codec=codec,
            index=dedup_index,
        )

        self._backends: dict[StorageProvider, StorageBackend] | None = (
            dict(backends) if backends is not None else None
        )
        scheduler_args: dict[str, Any] = {
            "settings": self.settings,
            "registry": self.registry,
            "catalog": self.catalog,
            "bus": self.bus,
            "backend_for": self.backend_for,
        }
        self.replication = ReplicationScheduler(**scheduler_args)
        self.backup = BackupScheduler(**scheduler_args)

        self._background_jobs = background_jobs
        self._scheduler: AsyncIOScheduler | None = None
        self._init_lock = asyncio.Lock()
        self._init_task: asyncio.Task[None] | None = None
        self._ready = False

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def is_ready(self) -> bool:
        return self._ready

    async def initialize(self) -> None:
        """Validate configuration, open backends and start background jobs.

        Idempotent and single-flight: concurrent callers share one
        initialization and observe the same outcome. A configuration error
        is remembered and re-raised on every later call; any other failure
        lets the next call try again.

        Raises:
            ConfigError: Invalid configuration
            StorageError: A backend failed to start
        """
        if self._ready:
            return

        async with self._init_lock:
            if self._init_task is None:
                self._init_task = asyncio.create_task(
                    self._initialize(), name="vault-engine-initialize"
                )
            task = self._init_task

        await asyncio.shield(task)

    async def _initialize(self) -> None:
        logger.info(
            "Initializing storage engine",
            extra={
                "provider": self.settings.provider.value,
                "regions": [region.id for region in self.settings.regions],
            },
        )
        try:
            validate_configuration(self.settings)
        except ConfigError:
            logger.exception("Storage configuration is invalid")
            raise

        try:
            if self._backends is None:
                self._backends = create_storage_backends(self.settings, self.registry)
            self._check_backend_coverage()
            await self._start_backends()
            self._start_background_jobs()
        except Exception:
            logger.exception("Failed to initialize storage engine")
            self._init_task = None
            raise

        self._ready = True
        logger.info(
            "Storage engine initialized",
            extra={
                "primary_region": self.registry.primary.id,
                "replication_targets": [r.id for r in self.registry.replication_targets()],
                "background_jobs": self._background_jobs,
            },
        )

    def _check_backend_coverage(self) -> None:
        backends = self._backends or {}
        for region in self.registry.regions:
            provider = self.registry.provider_for(region)
            if provider not in backends:
                raise StorageNotConfiguredError(
                    f"No backend registered for provider '{provider.value}'",
                    metadata={"provider": provider.value, "region": region.id},
                )

    def _unique_backends(self) -> list[StorageBackend]:
        unique: dict[int, StorageBackend] = {}
        for backend in (self._backends or {}).values():
            unique.setdefault(id(backend), backend)
        return list(unique.values())

    async def _start_backends(self) -> None:
        started: list[StorageBackend] = []
        try:
            for backend in self._unique_backends():
                await backend.startup()
                started.append(backend)
        except Exception:
            for backend in reversed(started):
                await backend.shutdown()
            raise

    def _start_background_jobs(self) -> None:
        if not self._background_jobs:
            return

        scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,  # Combine multiple pending executions into one
                "max_instances": 1,  # Only one instance of each job at a time
                "misfire_grace_time": 60,
            },
        )

        if self.replication.enabled:
            scheduler.add_job(
                func=self.replication.sweep,
                trigger=IntervalTrigger(seconds=self.settings.replication_interval_seconds),
                id="vault_replication_sweep",
                name="Replicate pending objects",
                replace_existing=True,
            )

        if self.backup.enabled:
            scheduler.add_job(
                func=self.backup.sweep,
                trigger=IntervalTrigger(seconds=self.settings.backup_interval_seconds),
                id="vault_backup_sweep",
                name="Back up pending objects and enforce retention",
                replace_existing=True,
            )

        scheduler.add_job(
            func=self.collect_metrics,
            trigger=IntervalTrigger(seconds=self.settings.metrics_interval_seconds),
            id="vault_metrics_collection",
            name="Collect storage metrics",
            replace_existing=True,
        )

        scheduler.start()
        self._scheduler = scheduler
        logger.info(f"Storage scheduler started with {len(scheduler.get_jobs())} jobs")

    async def ensure_ready(self) -> None:
        """Initialize on first use.

        Raises:
            NotReadyError: Initialization failed
        """
        if self._ready:
            return
        try:
            await self.initialize()
        except Exception as e:
            raise NotReadyError(
                f"Storage engine is not ready: {e}",
                metadata={"cause": type(e).__name__},
            ) from e

    async def stop(self) -> None:
        """Stop background jobs, cancel in-flight copies and close backends."""
        if self._scheduler is not None:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)
            self._scheduler = None

        await self.replication.stop()
        await self.backup.stop()

        if self._ready:
            for backend in self._unique_backends():
                try:
                    await backend.shutdown()
                except Exception:
                    logger.exception(
                        "Error shutting down storage backend",
                        extra={"backend": backend.backend_name},
                    )

        self._ready = False
        self._init_task = None
        logger.info("Storage engine stopped")

    async def __aenter__(self) -> StorageEngine:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def scheduled_jobs(self) -> list[dict[str, Any]]:
        """Status of the background jobs."""
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    # ========================================================================
    # Backend access
    # ========================================================================

    def backend_for(self, region: StorageRegion) -> StorageBackend:
        provider = self.registry.provider_for(region)
        backend = (self._backends or {}).get(provider)
        if backend is None:
            raise StorageNotConfiguredError(
                f"No backend registered for provider '{provider.value}'",
                metadata={"provider": provider.value, "region": region.id},
            )
        return backend

    async def _call_backend(
        self,
        operation: str,
        region: StorageRegion,
        key: str,
        call: Callable[[StorageBackend], Awaitable[T]],
        timeout: float | None,
    ) -> T:
        """Run one backend call under a timeout, normalizing failures.

        Raises:
            StorageTimeoutError: The call exceeded ``timeout``
            BackendError: The backend failed; unexpected errors are wrapped
                as BackendUnavailableError
        """
        timeout = timeout or self.settings.operation_timeout
        try:
            async with asyncio.timeout(timeout):
                return await call(self.backend_for(region))
        except StorageError:
            raise
        except TimeoutError as e:
            raise StorageTimeoutError(
                f"{operation.capitalize()} of {key} in {region.id} timed out after {timeout}s",
                key=key,
                metadata={"operation": operation, "region": region.id, "timeout": timeout},
            ) from e
        except Exception as e:
            raise BackendUnavailableError(
                f"{operation.capitalize()} of {key} in {region.id} failed: {e}",
                key=key,
                cause=e,
                metadata={"operation": operation, "region": region.id},
            ) from e

    async def _put_primary(
        self,
        region: StorageRegion,
        bucket: str,
        key: str,
        data: bytes,
        metadata: dict[str, str],
        timeout: float | None,
    ):
        @retry(
            max_attempts=self.settings.upload_max_attempts,
            initial_delay=self.settings.upload_retry_initial_delay,
            max_delay=max(self.settings.upload_retry_initial_delay * 8, 0.0),
            retry_if=lambda e: isinstance(e, BackendUnavailableError),
            operation="vault.primary_put",
        )
        async def attempt():
            return await self._call_backend(
                "put",
                region,
                key,
                lambda backend: backend.put(region, key, data, bucket=bucket, metadata=metadata),
                timeout,
            )

        try:
            return await attempt()
        except RetryError as e:
            raise e.last_exception from e

    # ========================================================================
    # Store
    # ========================================================================

    async def store_encrypted_object(
        self,
        request: StoredObjectRequest,
        *,
        timeout: float | None = None,
    ) -> EnhancedStorageResult:
        """Persist an encrypted object in the primary region.

        Succeeds only if the primary put succeeds. Replication and backup are
        started before returning and report ``pending`` in the result.

        Args:
            request: Encrypted payload and key material
            timeout: Per-attempt timeout of the primary put in seconds

        Raises:
            NotReadyError: The engine could not be initialized
            BackendUnavailableError: Transient backend failure (retryable)
            StorageTimeoutError: The primary put timed out
        """
        start = time.perf_counter()
        provider = self.settings.provider.value
        region_id = "unknown"
        holder: ObjectRecord | None = None

        try:
            await self.ensure_ready()
            region = self.registry.primary
            provider = self.registry.provider_for(region).value
            region_id = region.id
            bucket = request.bucket or self.registry.bucket_for(region)
            record_id = catalog_id(bucket, request.object_key)

            await self._vacate(record_id)

            payload = request.payload()
            optimized, holder = await self._optimize(payload, record_id)
            checksum = self._checksum(optimized.data, request.object_key)

            put_metadata = {
                "object-id": request.object_id,
                "checksum-sha256": checksum,
                "storage-class": region.cost_tier.value,
            }
            if optimized.codec:
                put_metadata["compression"] = optimized.codec

            async with track_storage_operation(
                "store",
                key=request.object_key,
                bucket=bucket,
                region=region.id,
                size_bytes=len(payload),
            ) as ctx:
                put_result = await self._put_primary(
                    region, bucket, request.object_key, optimized.data, put_metadata, timeout
                )
                ctx["result_size"] = len(optimized.data)
                ctx["version_id"] = put_result.version_id
        except Exception as e:
            if holder is not None:
                await self._drop_reservation(holder)
            self._emit_error(e, "store", request.object_id, provider, region_id, request.object_key)
            raise

        now = datetime.now(UTC)
        record = ObjectRecord(
            object_id=request.object_id,
            bucket=bucket,
            object_key=request.object_key,
            provider=provider,
            region=region.id,
            checksum=checksum,
            content_digest=optimized.digest,
            size=len(optimized.data),
            original_size=optimized.original_size,
            codec=optimized.codec,
            created_at=now,
            version_id=put_result.version_id,
        )
        await self._register(record, optimized, holder)

        self.replication.schedule(record)
        self.backup.schedule(record)

        cost = self.registry.estimate_cost(record.size, region)
        result = EnhancedStorageResult(
            object_id=request.object_id,
            bucket=bucket,
            object_key=request.object_key,
            wrapped_dek=request.wrapped_dek,
            dek_id=request.dek_id,
            created_at=now,
            provider=provider,
            region=region.id,
            size=record.size,
            checksum=checksum,
            version_id=put_result.version_id,
            replication_status=record.replication_status,
            backup_status=record.backup_status,
            cost=cost,
            metadata=StorageResultMetadata(
                compression_ratio=optimized.compression_ratio,
                deduplication_saved=optimized.deduplication_saved,
                storage_class=region.cost_tier.value,
                lifecycle_policy=self.registry.lifecycle_policy_for(region),
                compression=optimized.codec,
                deduplicated_from=record.reference_to,
                cost_tier_multiplier=self.registry.cost_multiplier(region),
            ),
        )

        self.bus.emit(
            StorageEvent(
                type=StorageEventType.UPLOAD,
                object_id=request.object_id,
                provider=provider,
                region=region.id,
                size=record.size,
                duration=(time.perf_counter() - start) * 1000,
                metadata={
                    "object_key": request.object_key,
                    "bucket": bucket,
                    "cost": cost,
                    "checksum": checksum,
                    "version_id": put_result.version_id,
                    "original_size": optimized.original_size,
                    "compression_ratio": optimized.compression_ratio,
                    "deduplication_saved": optimized.deduplication_saved,
                },
            )
        )
        logger.info(
            "Encrypted object stored",
            extra={
                "object_id": request.object_id,
                "object_key": request.object_key,
                "bucket": bucket,
                "region": region.id,
                "size": record.size,
                "replication_status": result.replication_status.value,
                "backup_status": result.backup_status.value,
            },
        )
        return result

    def _checksum(self, data: bytes, key: str) -> str:
        try:
            return compute_checksum(data)
        except Exception as e:
            raise BackendError(
                f"Checksum computation failed for {key}: {e}",
                key=key,
                cause=e,
                code="STORAGE_CHECKSUM_ERROR",
            ) from e

    # ========================================================================
    # Deduplication bookkeeping
    # ========================================================================

    @staticmethod
    def _is_referenced(record: ObjectRecord) -> bool:
        return bool(record.referrers) or record.pending_references > 0

    def _is_orphaned(self, record: ObjectRecord) -> bool:
        """A tombstone nothing refers to any more."""
        return record.deleted and not self._is_referenced(record)

    @staticmethod
    def _content_owner(record: ObjectRecord) -> ObjectRecord:
        """Follow relocations to the record currently holding the content."""
        while record.relocated_to is not None:
            record = record.relocated_to
        return record

    async def _optimize(
        self, payload: bytes, record_id: str
    ) -> tuple[OptimizedPayload, ObjectRecord | None]:
        """Optimize a payload and pin the content it deduplicates against.

        Returns:
            The optimized payload and, for a duplicate, the pinned holder
        """
        optimized = await self.optimizer.optimize(payload, exclude=record_id)
        duplicate = optimized.duplicate_of
        if duplicate is None:
            return optimized, None

        holder = self.catalog.by_id(duplicate.catalog_id)
        if holder is None or holder.reference_to is not None or holder.superseded:
            # Stale index entry: the referenced object no longer holds the bytes
            await self.optimizer.forget(optimized.digest, duplicate)
            optimized = await self.optimizer.optimize(payload, exclude=record_id, deduplicate=False)
            return optimized, None

        # Kept until the reference is registered or the upload fails
        holder.pending_references += 1
        return optimized, holder

    async def _drop_reservation(self, holder: ObjectRecord) -> None:
        holder = self._content_owner(holder)
        holder.pending_references -= 1
        if self._is_orphaned(holder):
            await self._purge(holder)

    async def _vacate(self, record_id: str) -> None:
        """Prepare the object stored under ``record_id`` for an overwrite.

        Content other objects deduplicate against is relocated first, and a
        tombstone left behind by a delete is purged so the key is free again.
        """
        existing = self.catalog.by_id(record_id)
        if existing is None:
            return

        existing.superseded = True
        if self._is_referenced(existing):
            await self._relocate(existing)
        if existing.deleted and self.catalog.by_id(record_id) is existing:
            await self._purge(existing)

    async def _relocate(self, record: ObjectRecord) -> None:
        """Move content other objects deduplicate against to an internal key.

        Referrers and pinned uploads follow the content. Their reference
        objects keep naming the original location; retrieval resolves
        references through the catalogue.
        """
        region = self.registry.get(record.region)
        data = await self._fetch_verified(record, None)
        key = f"{RELOCATED_PREFIX}/{record.content_digest}/{uuid4().hex}"
        metadata = {
            "object-id": record.object_id,
            "checksum-sha256": record.checksum,
            "storage-class": region.cost_tier.value,
        }
        if record.codec:
            metadata["compression"] = record.codec
        put_result = await self._put_primary(region, record.bucket, key, data, metadata, None)

        holder = replace(
            record,
            object_key=key,
            version_id=put_result.version_id,
            referrers=set(),
            relocated_to=None,
            superseded=False,
            deleted=True,
            replication={},
            backup={},
            backup_copies=[],
        )
        for referrer_id in record.referrers:
            referrer = self.catalog.by_id(referrer_id)
            if referrer is not None and referrer.reference_to == record.catalog_id:
                referrer.reference_to = holder.catalog_id
                holder.referrers.add(referrer_id)
        record.referrers = set()
        record.pending_references = 0
        record.relocated_to = holder
        self.catalog.add(holder)

        logger.info(
            "Deduplicated content relocated",
            extra={
                "object_key": record.object_key,
                "location": key,
                "referrers": len(holder.referrers),
                "pending_references": holder.pending_references,
            },
        )
        if self._is_orphaned(holder):
            # Every reference went away while the content was being copied
            await self._purge(holder)

    async def _register(
        self,
        record: ObjectRecord,
        optimized: OptimizedPayload,
        holder: ObjectRecord | None,
    ) -> None:
        """Add a freshly stored object to the catalogue and dedup index."""
        if holder is not None:
            holder = self._content_owner(holder)
            holder.pending_references -= 1
            record.reference_to = holder.catalog_id
            holder.referrers.add(record.catalog_id)

        replaced = self.catalog.by_id(record.catalog_id)
        self.catalog.add(record)
        if replaced is not None:
            await self._release(replaced)
            if replaced.deleted:
                # The tombstone's bytes were overwritten; its replicas remain
                await self._delete_replicas(replaced)

        if holder is not None:
            return

        try:
            await self.optimizer.remember(
                optimized,
                DedupLocation(bucket=record.bucket, object_key=record.object_key, region=record.region),
            )
        except Exception:
            logger.warning(
                "Failed to record object in deduplication index",
                extra={"object_key": record.object_key},
                exc_info=True,
            )

    async def _release(self, record: ObjectRecord) -> None:
        """Detach a record being replaced or deleted from dedup bookkeeping."""
        self.backup.retire(record)

        if record.reference_to is not None:
            target = self.catalog.by_id(record.reference_to)
            if target is None:
                return
            successor = self.catalog.by_id(record.catalog_id)
            # The new version of the key may reference the same content
            if successor is None or successor.reference_to != target.catalog_id:
                target.referrers.discard(record.catalog_id)
            if self._is_orphaned(target):
                await self._purge(target)
            return

        try:
            await self.optimizer.forget(
                record.content_digest,
                DedupLocation(bucket=record.bucket, object_key=record.object_key, region=record.region),
            )
        except Exception:
            logger.warning(
                "Failed to remove object from deduplication index",
                extra={"object_key": record.object_key},
                exc_info=True,
            )

    async def _purge(self, record: ObjectRecord) -> None:
        """Delete the primary bytes and replicas of a tombstoned object."""
        region = self.registry.get(record.region)
        try:
            await self._call_backend(
                "delete",
                region,
                record.object_key,
                lambda backend: backend.delete(region, record.object_key, bucket=record.bucket),
                None,
            )
        except StorageError as e:
            logger.warning(
                "Failed to purge deduplicated content",
                extra={"object_key": record.object_key, "error": str(e)},
            )
            return
        if self.catalog.by_id(record.catalog_id) is record:
            self.catalog.discard(record)
        await self._delete_replicas(record)

    # ========================================================================
    # Retrieve
    # ========================================================================

    def _lookup(self, object_key: str, bucket: str | None) -> ObjectRecord:
        bucket = bucket or self.registry.bucket_for(self.registry.primary)
        record = self.catalog.get(bucket, object_key)
        if record is None:
            raise StorageFileNotFoundError(
                f"Object not found: {bucket}/{object_key}",
                key=object_key,
                metadata={"bucket": bucket},
            )
        return record

    async def _fetch_verified(self, record: ObjectRecord, timeout: float | None) -> bytes:
        region = self.registry.get(record.region)
        data = await self._call_backend(
            "get",
            region,
            record.object_key,
            lambda backend: backend.get(region, record.object_key, bucket=record.bucket),
            timeout,
        )
        actual = compute_checksum(data)
        if actual != record.checksum:
            raise IntegrityFailureError(
                f"Checksum mismatch for {record.catalog_id}",
                metadata={
                    "object_key": record.object_key,
                    "bucket": record.bucket,
                    "expected": record.checksum,
                    "actual": actual,
                },
            )
        return data

    async def retrieve_encrypted_object(
        self,
        object_key: str,
        *,
        bucket: str | None = None,
        timeout: float | None = None,
    ) -> bytes:
        """Fetch an object from the primary region and undo optimization.

        Returns:
            The stored ``ciphertext + iv + tag`` bytes

        Raises:
            StorageFileNotFoundError: Unknown object
            IntegrityFailureError: Stored bytes do not match the checksum
            BackendError: Backend failure
        """
        await self.ensure_ready()
        start = time.perf_counter()
        record = self._lookup(object_key, bucket)

        try:
            async with track_storage_operation(
                "retrieve", key=object_key, bucket=record.bucket, region=record.region
            ) as ctx:
                stored = await self._fetch_verified(record, timeout)
                holder = record
                if record.reference_to is not None:
                    # The reference object names where the content was first
                    # stored; the catalogue tracks where it lives now
                    origin = decode_reference(stored)
                    holder = self.catalog.by_id(record.reference_to)
                    if holder is None:
                        raise IntegrityFailureError(
                            f"Broken deduplication reference in {record.catalog_id}",
                            metadata={"reference": origin, "expected": record.reference_to},
                        )
                    stored = await self._fetch_verified(holder, timeout)

                data = self.optimizer.restore(stored, holder.codec)
                if compute_checksum(data) != record.content_digest:
                    raise IntegrityFailureError(
                        f"Restored payload of {record.catalog_id} does not match the original",
                        metadata={"object_key": object_key, "codec": holder.codec},
                    )
                ctx["result_size"] = len(data)
        except Exception as e:
            self._emit_error(e, "retrieve", record.object_id, record.provider, record.region, object_key)
            raise

        self.bus.emit(
            StorageEvent(
                type=StorageEventType.DOWNLOAD,
                object_id=record.object_id,
                provider=record.provider,
                region=record.region,
                size=len(data),
                duration=(time.perf_counter() - start) * 1000,
                metadata={"object_key": object_key, "bucket": record.bucket},
            )
        )
        return data

    # ========================================================================
    # Delete
    # ========================================================================

    async def delete_encrypted_object(
        self,
        object_key: str,
        *,
        bucket: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Delete an object and its replicas.

        Backup copies are retired and removed by the backup sweep once their
        retention period has passed. An object other objects deduplicate
        against disappears from the catalogue immediately, but its bytes are
        kept until the last reference is deleted.

        Raises:
            StorageFileNotFoundError: Unknown object
            BackendError: The primary delete failed
        """
        await self.ensure_ready()
        start = time.perf_counter()
        record = self._lookup(object_key, bucket)
        region = self.registry.get(record.region)

        try:
            async with track_storage_operation(
                "delete", key=object_key, bucket=record.bucket, region=region.id
            ):
                if self._is_referenced(record):
                    record.deleted = True
                else:
                    await self._call_backend(
                        "delete",
                        region,
                        object_key,
                        lambda backend: backend.delete(region, object_key, bucket=record.bucket),
                        timeout,
                    )
                    self.catalog.discard(record)
                    record.deleted = True
        except Exception as e:
            self._emit_error(e, "delete", record.object_id, record.provider, region.id, object_key)
            raise

        await self._release(record)
        if not self._is_referenced(record):
            # Replicas of tombstoned content go when the content is purged
            await self._delete_replicas(record)

        self.bus.emit(
            StorageEvent(
                type=StorageEventType.DELETE,
                object_id=record.object_id,
                provider=record.provider,
                region=region.id,
                duration=(time.perf_counter() - start) * 1000,
                metadata={
                    "object_key": object_key,
                    "bucket": record.bucket,
                    "retained_for_references": self._is_referenced(record),
                },
            )
        )
        logger.info(
            "Encrypted object deleted",
            extra={"object_id": record.object_id, "object_key": object_key, "bucket": record.bucket},
        )

    async def _delete_replicas(self, record: ObjectRecord) -> None:
        for state in record.replication.values():
            if state.location is None:
                continue
            target = self.registry.get(state.region)
            location = state.location
            bucket = self.registry.bucket_for(target)
            try:
                await self._call_backend(
                    "delete",
                    target,
                    location,
                    lambda backend, t=target, k=location, b=bucket: backend.delete(t, k, bucket=b),
                    self.settings.sweep_operation_timeout,
                )
            except StorageError as e:
                logger.warning(
                    "Failed to delete replica",
                    extra={"object_key": record.object_key, "region": target.id, "error": str(e)},
                )
                self._emit_error(
                    e, "delete_replica", record.object_id, record.provider, target.id, location
                )
                continue
            state.location = None

    # ========================================================================
    # Queries
    # ========================================================================

    def get_object_status(self, object_key: str, *, bucket: str | None = None) -> ObjectStatus:
        """Current replication and backup status of a stored object."""
        return ObjectStatus.from_record(self._lookup(object_key, bucket))

    def get_metrics(self) -> StorageMetrics:
        """Read-only snapshot of the aggregated storage metrics."""
        return self._metrics.snapshot()

    def get_configuration(self) -> dict[str, Any]:
        """Configuration snapshot with credentials redacted."""
        return self.settings.redacted()

    def recent_events(
        self,
        limit: int | None = None,
        *,
        event_type: StorageEventType | None = None,
        object_id: str | None = None,
    ) -> list[StorageEvent]:
        return self.bus.recent_events(limit, event_type=event_type, object_id=object_id)

    async def collect_metrics(self) -> dict[str, bool]:
        """Log a metrics summary and poll backend health.

        Returns:
            Health per backend name
        """
        snapshot = self.get_metrics()
        logger.info(
            "Storage metrics",
            extra={
                "total_objects": snapshot.total_objects,
                "total_size": snapshot.total_size,
                "operations_count": snapshot.operations_count,
                "average_latency_ms": round(snapshot.average_latency, 3),
                "error_rate": round(snapshot.error_rate, 4),
                "cost_estimate": snapshot.cost_estimate,
            },
        )

        health: dict[str, bool] = {}
        for backend in self._unique_backends():
            try:
                async with asyncio.timeout(self.settings.operation_timeout):
                    healthy = await backend.health_check()
            except Exception as e:
                logger.warning(
                    "Backend health check failed",
                    extra={"backend": backend.backend_name, "error": str(e)},
                )
                healthy = False
            health[backend.backend_name] = healthy
            record_backend_health(backend.backend_name, healthy)
        return health

    # ========================================================================
    # Events
    # ========================================================================

    def _emit_error(
        self,
        error: Exception,
        operation: str,
        object_id: str,
        provider: str,
        region: str,
        object_key: str,
    ) -> None:
        self.bus.emit(
            StorageEvent(
                type=StorageEventType.ERROR,
                object_id=object_id,
                provider=provider,
                region=region,
                error=f"{type(error).__name__}: {error}",
                metadata={
                    "operation": operation,
                    "object_key": object_key,
                    "error_kind": type(error).__name__,
                    "error_code": getattr(error, "code", None),
                    "retryable": getattr(error, "retryable", False),
                },
            )
        )
