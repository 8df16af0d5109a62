"""Shared machinery of the replication and backup schedulers.

Both schedulers copy the stored bytes of an object from the primary region
to every target region; a deduplicated object is copied with the content it
references. A copy is attempted immediately after upload and again by a
periodic sweep while it is ``pending`` or ``failed``. After
``max_sweep_attempts`` failed attempts the copy becomes terminally failed:
it is logged at ERROR, counted for alerting and skipped until
``reset_failed`` is called.

Copy failures are recorded as ``error`` events and never propagate.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
import logging
import time
from typing import TYPE_CHECKING, ClassVar
import weakref

from .exceptions import IntegrityFailureError, StorageTimeoutError
from .instrumentation import track_storage_operation
from .metrics import record_terminal_failure, storage_copy_sweep_duration_seconds
from .models import CopyState, CopyStatus, StorageEvent, StorageEventType
from .optimizer import compute_checksum

if TYPE_CHECKING:
    from collections.abc import Callable

    from vault_service.core.settings.vault import StorageRegion, VaultSettings

    from .backends.protocol import StorageBackend
    from .catalog import ObjectCatalog
    from .events import EventBus
    from .models import ObjectRecord
    from .regions import RegionRegistry

    BackendResolver = Callable[[StorageRegion], StorageBackend]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    kind: str
    attempted: int = 0
    completed: int = 0
    failed: int = 0
    terminal: int = 0
    duration: float = 0.0


class CopyScheduler:
    """Base class of ``ReplicationScheduler`` and ``BackupScheduler``.

    Subclasses pick the per-record state table, the destination key and
    whether the scheduler is enabled.
    """

    kind: ClassVar[str]
    event_type: ClassVar[StorageEventType]

    def __init__(
        self,
        *,
        settings: VaultSettings,
        registry: RegionRegistry,
        catalog: ObjectCatalog,
        bus: EventBus,
        backend_for: BackendResolver,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.catalog = catalog
        self.bus = bus
        self._backend_for = backend_for
        self._tasks: set[asyncio.Task[None]] = set()
        self._semaphore = asyncio.Semaphore(settings.max_pool_connections)
        self._sweep_lock = asyncio.Lock()
        # Copies to the same destination run one at a time
        self._destination_locks: weakref.WeakValueDictionary[tuple[str, str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        raise NotImplementedError

    def states(self, record: ObjectRecord) -> dict[str, CopyState]:
        raise NotImplementedError

    def destination_key(self, record: ObjectRecord, now: datetime) -> str:
        raise NotImplementedError

    def on_copied(
        self, record: ObjectRecord, state: CopyState, bucket: str, now: datetime
    ) -> None:
        """Called after a copy has been written."""

    async def after_sweep(self, now: datetime) -> None:
        """Called at the end of every sweep."""

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def ensure_states(self, record: ObjectRecord) -> dict[str, CopyState]:
        """Create a pending state for every target region not yet tracked."""
        states = self.states(record)
        for target in self.registry.replication_targets():
            states.setdefault(target.id, CopyState(region=target.id))
        return states

    @staticmethod
    def _eligible(state: CopyState) -> bool:
        return (
            not state.in_flight
            and not state.terminal
            and state.status in (CopyStatus.PENDING, CopyStatus.FAILED)
        )

    def schedule(self, record: ObjectRecord) -> asyncio.Task[None] | None:
        """Start copying a freshly stored object in the background.

        The task is created before this returns, so copy lag is measured
        from upload time.
        """
        if not self.enabled:
            return None

        states = [s for s in self.ensure_states(record).values() if self._eligible(s)]
        if not states:
            return None
        for state in states:
            state.in_flight = True

        task = asyncio.create_task(
            self._copy_all(record, states, trigger="upload"),
            name=f"vault-{self.kind}:{record.catalog_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _copy_all(
        self, record: ObjectRecord, states: list[CopyState], *, trigger: str
    ) -> None:
        await asyncio.gather(*(self._copy(record, state, trigger=trigger) for state in states))

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Retry every pending or failed, non-terminal copy.

        Sweeps never overlap; a second caller waits for the running one.
        """
        if not self.enabled:
            return SweepReport(kind=self.kind)

        async with self._sweep_lock:
            now = now or datetime.now(UTC)
            start = time.perf_counter()

            candidates: list[tuple[ObjectRecord, CopyState]] = []
            for record in self.catalog.records():
                for state in self.ensure_states(record).values():
                    if self._eligible(state):
                        state.in_flight = True
                        candidates.append((record, state))

            results = await asyncio.gather(
                *(self._copy(record, state, trigger="sweep") for record, state in candidates)
            )
            await self.after_sweep(now)

            duration = time.perf_counter() - start
            storage_copy_sweep_duration_seconds.labels(kind=self.kind).observe(duration)
            report = SweepReport(
                kind=self.kind,
                attempted=len(candidates),
                completed=sum(1 for ok in results if ok),
                failed=sum(1 for ok in results if not ok),
                terminal=sum(1 for _, state in candidates if state.terminal),
                duration=duration,
            )

        logger.info(
            f"{self.kind.capitalize()} sweep finished",
            extra={
                "kind": self.kind,
                "attempted": report.attempted,
                "completed": report.completed,
                "failed": report.failed,
                "terminal": report.terminal,
                "duration": round(duration, 3),
            },
        )
        return report

    # ------------------------------------------------------------------
    # Copy
    # ------------------------------------------------------------------

    async def _copy(self, record: ObjectRecord, state: CopyState, *, trigger: str) -> bool:
        source = self.registry.get(record.region)
        target = self.registry.get(state.region)
        bucket = self.registry.bucket_for(target)
        now = datetime.now(UTC)
        destination = self.destination_key(record, now)
        timeout = self.settings.sweep_operation_timeout
        start = time.perf_counter()
        state.in_flight = True

        lock_key = (target.id, bucket, destination)
        lock = self._destination_locks.get(lock_key)
        if lock is None:
            lock = self._destination_locks[lock_key] = asyncio.Lock()

        try:
            async with self._semaphore, lock:
                if not self._is_current(record):
                    # Replaced or deleted while queued; the newer version copies itself
                    return True
                try:
                    async with asyncio.timeout(timeout):
                        async with track_storage_operation(
                            self.kind,
                            key=destination,
                            bucket=bucket,
                            region=target.id,
                        ) as ctx:
                            data, content = await self._read_content(record)
                            metadata = {
                                "source-region": source.id,
                                "checksum-sha256": content.checksum,
                            }
                            if content.codec:
                                metadata["compression"] = content.codec
                            await self._backend_for(target).put(
                                target, destination, data, bucket=bucket, metadata=metadata
                            )
                            ctx["result_size"] = len(data)
                except TimeoutError as e:
                    raise StorageTimeoutError(
                        f"{self.kind.capitalize()} of {record.object_key} to "
                        f"{target.id} timed out after {timeout}s",
                        key=record.object_key,
                        metadata={"region": target.id},
                    ) from e

                if not self._is_current(record):
                    # Deleted while the copy was in flight
                    await self._discard_orphan(target, destination, bucket)
                    return True
        except Exception as e:
            self._record_failure(record, state, e, trigger=trigger)
            return False
        finally:
            state.in_flight = False

        state.attempts += 1
        state.status = CopyStatus.COMPLETED
        state.location = destination
        state.last_error = None
        state.completed_at = now

        self.on_copied(record, state, bucket, now)
        self.bus.emit(
            StorageEvent(
                type=self.event_type,
                object_id=record.object_id,
                provider=self.registry.provider_for(target).value,
                region=target.id,
                size=len(data),
                duration=(time.perf_counter() - start) * 1000,
                metadata={
                    "object_key": record.object_key,
                    "source_region": source.id,
                    "location": destination,
                    "trigger": trigger,
                    "attempt": state.attempts,
                },
            )
        )
        return True

    def _record_failure(
        self,
        record: ObjectRecord,
        state: CopyState,
        error: Exception,
        *,
        trigger: str,
    ) -> None:
        state.attempts += 1
        state.status = CopyStatus.FAILED
        state.last_error = f"{type(error).__name__}: {error}"
        max_attempts = self.settings.max_sweep_attempts

        log_extra = {
            "kind": self.kind,
            "object_id": record.object_id,
            "object_key": record.object_key,
            "region": state.region,
            "attempt": state.attempts,
            "max_attempts": max_attempts,
            "error": state.last_error,
        }
        if state.attempts >= max_attempts:
            state.terminal = True
            record_terminal_failure(self.kind, state.region)
            logger.error(
                f"{self.kind.capitalize()} permanently failed; operator action required",
                extra=log_extra,
            )
        else:
            logger.warning(f"{self.kind.capitalize()} attempt failed", extra=log_extra)

        self.bus.emit(
            StorageEvent(
                type=StorageEventType.ERROR,
                object_id=record.object_id,
                provider=self.registry.provider_for(self.registry.get(state.region)).value,
                region=state.region,
                error=state.last_error,
                metadata={
                    "operation": self.kind,
                    "object_key": record.object_key,
                    "trigger": trigger,
                    "attempt": state.attempts,
                    "terminal": state.terminal,
                    "error_code": getattr(error, "code", type(error).__name__),
                },
            )
        )

    async def _read_content(self, record: ObjectRecord) -> tuple[bytes, ObjectRecord]:
        """Read the bytes a copy of ``record`` must hold.

        A deduplicated object is copied with the content it references, not
        its reference object, so every copy can be restored on its own.

        Returns:
            The stored bytes and the record that owns them

        Raises:
            IntegrityFailureError: The content is missing or does not match
                its checksum
        """
        content = record
        if record.reference_to is not None:
            holder = self.catalog.by_id(record.reference_to)
            if holder is None:
                raise IntegrityFailureError(
                    f"Deduplicated content of {record.catalog_id} is missing",
                    metadata={"reference": record.reference_to},
                )
            content = holder

        region = self.registry.get(content.region)
        data = await self._backend_for(region).get(
            region, content.object_key, bucket=content.bucket
        )
        if compute_checksum(data) != content.checksum:
            raise IntegrityFailureError(
                f"Checksum mismatch reading {content.catalog_id} for {self.kind}",
                metadata={"object_key": record.object_key, "source": content.catalog_id},
            )
        return data, content

    def _is_current(self, record: ObjectRecord) -> bool:
        return not record.deleted and self.catalog.by_id(record.catalog_id) is record

    async def _discard_orphan(self, region: StorageRegion, key: str, bucket: str) -> None:
        try:
            async with asyncio.timeout(self.settings.sweep_operation_timeout):
                await self._backend_for(region).delete(region, key, bucket=bucket)
        except Exception as e:
            logger.warning(
                f"Could not remove orphaned {self.kind} copy",
                extra={"key": key, "bucket": bucket, "region": region.id, "error": str(e)},
            )

    # ------------------------------------------------------------------
    # Operator controls and lifecycle
    # ------------------------------------------------------------------

    def reset_failed(self, object_key: str, bucket: str | None = None) -> int:
        """Make terminally failed copies of an object eligible again.

        Returns:
            Number of copies reset
        """
        reset = 0
        for record in self.catalog.find_key(object_key):
            if bucket is not None and record.bucket != bucket:
                continue
            for state in self.states(record).values():
                if state.terminal:
                    state.terminal = False
                    state.attempts = 0
                    state.status = CopyStatus.PENDING
                    state.last_error = None
                    reset += 1
        if reset:
            logger.info(
                f"Reset failed {self.kind} copies",
                extra={"object_key": object_key, "bucket": bucket, "count": reset},
            )
        return reset

    def failed_objects(self) -> list[ObjectRecord]:
        """Records with at least one terminally failed copy."""
        return [
            record
            for record in self.catalog.records()
            if any(state.terminal for state in self.states(record).values())
        ]

    async def wait_idle(self) -> None:
        """Wait for every in-flight immediate copy to finish."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight immediate copies."""
        tasks = tuple(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
