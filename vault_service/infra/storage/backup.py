"""Scheduled backups and retention enforcement.

Each object gets one backup copy per target region, written to
``backups/{YYYY-MM-DD}/{object_key}`` on the day the copy is taken. Backup
copies outlive the object: deleting or overwriting an object retires its
copies, and the daily sweep removes retired copies once they are older than
``backup.retention_days``. With ``optimization.lifecycle_management`` enabled
expiry is left to the bucket's native lifecycle policy and the sweep only
stops tracking expired copies.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
import logging
from typing import TYPE_CHECKING, Any

from .models import BackupCopy, StorageEvent, StorageEventType
from .scheduling import CopyScheduler

if TYPE_CHECKING:
    from datetime import datetime

    from .models import CopyState, ObjectRecord

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backups"


def backup_key(object_key: str, day: datetime) -> str:
    return f"{BACKUP_PREFIX}/{day:%Y-%m-%d}/{object_key}"


class BackupScheduler(CopyScheduler):
    """Backs objects up to the backup-policy targets on a daily cadence."""

    kind = "backup"
    event_type = StorageEventType.BACKUP

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._retired: list[BackupCopy] = []

    @property
    def enabled(self) -> bool:
        return self.settings.backup.enabled

    def states(self, record: ObjectRecord) -> dict[str, CopyState]:
        return record.backup

    def destination_key(self, record: ObjectRecord, now: datetime) -> str:
        return backup_key(record.object_key, now)

    def on_copied(
        self, record: ObjectRecord, state: CopyState, bucket: str, now: datetime
    ) -> None:
        if state.location is None:
            return
        record.backup_copies.append(
            BackupCopy(region=state.region, bucket=bucket, location=state.location, created_at=now)
        )

    def retire(self, record: ObjectRecord) -> None:
        """Hand the backup copies of a deleted or replaced object to retention."""
        self._retired.extend(record.backup_copies)
        record.backup_copies = []

    def retired_copies(self) -> list[BackupCopy]:
        return list(self._retired)

    async def after_sweep(self, now: datetime) -> None:
        await self.enforce_retention(now)

    async def enforce_retention(self, now: datetime) -> int:
        """Delete retired backup copies older than the retention period.

        Returns:
            Number of copies expired
        """
        cutoff = now - timedelta(days=self.settings.backup.retention_days)
        expired = [copy for copy in self._retired if copy.created_at < cutoff]
        if not expired:
            return 0

        if self.settings.optimization.lifecycle_management:
            for copy in expired:
                self._retired.remove(copy)
            logger.info(
                "Backup expiry delegated to bucket lifecycle policy",
                extra={"expired": len(expired), "retention_days": self.settings.backup.retention_days},
            )
            return len(expired)

        # A same-day re-upload writes its backup to the same location
        live = {
            (c.region, c.bucket, c.location)
            for record in self.catalog.records()
            for c in record.backup_copies
        }

        removed = 0
        for copy in expired:
            if (copy.region, copy.bucket, copy.location) in live:
                self._retired.remove(copy)
                continue
            region = self.registry.get(copy.region)
            try:
                async with asyncio.timeout(self.settings.sweep_operation_timeout):
                    await self._backend_for(region).delete(region, copy.location, bucket=copy.bucket)
            except Exception as e:
                logger.warning(
                    "Failed to delete expired backup",
                    extra={"location": copy.location, "region": copy.region, "error": str(e)},
                )
                self.bus.emit(
                    StorageEvent(
                        type=StorageEventType.ERROR,
                        object_id=copy.location,
                        provider=self.registry.provider_for(region).value,
                        region=copy.region,
                        error=f"{type(e).__name__}: {e}",
                        metadata={"operation": "backup_retention"},
                    )
                )
                continue
            self._retired.remove(copy)
            removed += 1

        logger.info(
            "Expired backups removed",
            extra={"removed": removed, "retention_days": self.settings.backup.retention_days},
        )
        return removed
