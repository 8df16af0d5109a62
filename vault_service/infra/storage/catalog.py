"""In-process catalogue of stored objects.

The catalogue is owned by one engine instance and mutated only from its
event loop, so plain dictionaries are sufficient.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ObjectRecord


def catalog_id(bucket: str, object_key: str) -> str:
    return f"{bucket}/{object_key}"


class ObjectCatalog:
    def __init__(self) -> None:
        self._records: dict[str, ObjectRecord] = {}

    def get(self, bucket: str, object_key: str) -> ObjectRecord | None:
        """Live record for a key; tombstones are hidden."""
        record = self._records.get(catalog_id(bucket, object_key))
        if record is None or record.deleted:
            return None
        return record

    def by_id(self, record_id: str) -> ObjectRecord | None:
        """Record by catalogue id, tombstones included."""
        return self._records.get(record_id)

    def find_key(self, object_key: str) -> list[ObjectRecord]:
        """Live records with this key in any bucket."""
        return [
            record
            for record in self._records.values()
            if record.object_key == object_key and not record.deleted
        ]

    def add(self, record: ObjectRecord) -> None:
        self._records[record.catalog_id] = record

    def discard(self, record: ObjectRecord) -> None:
        self._records.pop(record.catalog_id, None)

    def records(self, *, include_deleted: bool = False) -> list[ObjectRecord]:
        """Snapshot of the records, safe to iterate across awaits."""
        return [r for r in self._records.values() if include_deleted or not r.deleted]

    def __len__(self) -> int:
        return sum(1 for r in self._records.values() if not r.deleted)

    def __contains__(self, record_id: object) -> bool:
        record = self._records.get(record_id) if isinstance(record_id, str) else None
        return record is not None and not record.deleted
