"""Cross-region replication of stored objects.

Replicas keep the object key of the primary copy and land in the regional
bucket of each target region.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import StorageEventType
from .scheduling import CopyScheduler

if TYPE_CHECKING:
    from datetime import datetime

    from .models import CopyState, ObjectRecord


class ReplicationScheduler(CopyScheduler):
    """Replicates objects to the backup-policy targets.

    Runs when ``security.replication`` is enabled: immediately after each
    upload and on an hourly sweep.
    """

    kind = "replication"
    event_type = StorageEventType.REPLICATION

    @property
    def enabled(self) -> bool:
        return self.settings.security.replication

    def states(self, record: ObjectRecord) -> dict[str, CopyState]:
        return record.replication

    def destination_key(self, record: ObjectRecord, now: datetime) -> str:
        return record.object_key
