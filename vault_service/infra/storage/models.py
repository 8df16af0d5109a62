"""Data model of the encrypted-object engine.

Requests and results crossing the engine boundary are frozen pydantic
models. Events are frozen dataclasses appended to the event log. Per-object
bookkeeping (``ObjectRecord``) is a mutable dataclass owned by the engine's
catalogue and only ever mutated from the event loop.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CopyStatus(StrEnum):
    """Replication and backup state of a stored object."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class StorageEventType(StrEnum):
    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE = "delete"
    BACKUP = "backup"
    REPLICATION = "replication"
    ERROR = "error"


def _decode_b64(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


class StoredObjectRequest(BaseModel):
    """An already-encrypted object to persist.

    The ciphertext, IV and authentication tag are stored together as one
    payload because all three are needed to decrypt.

    Example:
        >>> request = StoredObjectRequest(
        ...     object_id="img-1",
        ...     object_key="users/42/img-1.bin",
        ...     wrapped_dek="d3JhcHBlZA==",
        ...     ciphertext_b64="Y2lwaGVy",
        ...     iv_b64="aXY=",
        ...     tag_b64="dGFn",
        ... )
        >>> request.payload()
        b'cipherivtag'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    object_id: str = Field(min_length=1, max_length=255)
    bucket: str | None = Field(default=None, min_length=3, max_length=63)
    object_key: str = Field(min_length=1, max_length=1024)
    wrapped_dek: str = Field(min_length=1)
    dek_id: str | None = None
    ciphertext_b64: str
    iv_b64: str
    tag_b64: str

    @field_validator("ciphertext_b64", "iv_b64", "tag_b64")
    @classmethod
    def _validate_base64(cls, value: str) -> str:
        try:
            _decode_b64(value)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"not valid base64: {e}") from e
        return value

    @field_validator("object_key")
    @classmethod
    def _validate_key(cls, value: str) -> str:
        if value.startswith("/") or "\x00" in value:
            raise ValueError("object_key must be relative and must not contain NUL bytes")
        return value

    def payload(self) -> bytes:
        """Concatenate ciphertext, IV and tag into the stored byte sequence."""
        return (
            _decode_b64(self.ciphertext_b64)
            + _decode_b64(self.iv_b64)
            + _decode_b64(self.tag_b64)
        )


class StorageResultMetadata(BaseModel):
    """Optimization and placement details attached to a stored object."""

    model_config = ConfigDict(frozen=True)

    compression_ratio: float = 1.0
    deduplication_saved: int = 0
    storage_class: str
    lifecycle_policy: str
    compression: str | None = None
    deduplicated_from: str | None = None
    cost_tier_multiplier: float = 1.0


class EnhancedStorageResult(BaseModel):
    """The caller's durable record of where an object lives.

    Replication and backup status reflect the moment of return. Use
    ``StorageEngine.get_object_status`` for their current values.
    """

    model_config = ConfigDict(frozen=True)

    object_id: str
    bucket: str
    object_key: str
    wrapped_dek: str
    dek_id: str | None
    created_at: datetime
    provider: str
    region: str
    size: int
    checksum: str
    version_id: str | None
    replication_status: CopyStatus
    backup_status: CopyStatus
    cost: float
    metadata: StorageResultMetadata


@dataclass(frozen=True)
class StorageEvent:
    """One entry of the append-only storage event stream.

    ``duration`` is in milliseconds.
    """

    type: StorageEventType
    object_id: str
    provider: str
    region: str
    size: int | None = None
    duration: float | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class StorageMetrics(BaseModel):
    """Read-only snapshot of the running aggregates."""

    model_config = ConfigDict(frozen=True)

    total_objects: int = 0
    total_size: int = 0
    operations_count: int = 0
    average_latency: float = 0.0
    error_rate: float = 0.0
    cost_estimate: float = 0.0
    last_backup: datetime | None = None
    last_replication: datetime | None = None


@dataclass
class CopyState:
    """Progress of one replication or backup copy of an object."""

    region: str
    status: CopyStatus = CopyStatus.PENDING
    attempts: int = 0
    terminal: bool = False
    in_flight: bool = False
    location: str | None = None
    last_error: str | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class BackupCopy:
    """A completed backup copy, kept for retention enforcement."""

    region: str
    bucket: str
    location: str
    created_at: datetime


def aggregate_status(states: dict[str, CopyState]) -> CopyStatus:
    """Fold per-region copy states into one status.

    Any failed copy makes the object ``failed``; all copies completed makes
    it ``completed``. With nothing scheduled the object stays ``pending``.
    """
    if not states:
        return CopyStatus.PENDING
    statuses = {state.status for state in states.values()}
    if CopyStatus.FAILED in statuses:
        return CopyStatus.FAILED
    if statuses == {CopyStatus.COMPLETED}:
        return CopyStatus.COMPLETED
    return CopyStatus.PENDING


@dataclass
class ObjectRecord:
    """Catalogue entry of a stored object.

    ``reference_to`` is set when the stored bytes are a deduplication
    reference; it holds the catalogue id of the object owning the content.
    ``referrers`` lists the objects pointing at this one and
    ``pending_references`` counts uploads of duplicates still in flight. A
    deleted object that is still referenced is kept as a tombstone until the
    last reference goes away.

    Overwriting a referenced object moves its content to an internal key
    first; ``relocated_to`` then points at the record now holding it, and
    ``superseded`` stops new uploads from deduplicating against the old one.
    """

    object_id: str
    bucket: str
    object_key: str
    provider: str
    region: str
    checksum: str
    content_digest: str
    size: int
    original_size: int
    codec: str | None
    created_at: datetime
    version_id: str | None = None
    reference_to: str | None = None
    referrers: set[str] = field(default_factory=set)
    pending_references: int = 0
    relocated_to: ObjectRecord | None = field(default=None, repr=False)
    superseded: bool = False
    deleted: bool = False
    replication: dict[str, CopyState] = field(default_factory=dict)
    backup: dict[str, CopyState] = field(default_factory=dict)
    backup_copies: list[BackupCopy] = field(default_factory=list)

    @property
    def catalog_id(self) -> str:
        return f"{self.bucket}/{self.object_key}"

    @property
    def replication_status(self) -> CopyStatus:
        return aggregate_status(self.replication)

    @property
    def backup_status(self) -> CopyStatus:
        return aggregate_status(self.backup)


class CopyTargetStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    region: str
    status: CopyStatus
    attempts: int
    terminal: bool
    location: str | None = None
    last_error: str | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_state(cls, state: CopyState) -> CopyTargetStatus:
        return cls(
            region=state.region,
            status=state.status,
            attempts=state.attempts,
            terminal=state.terminal,
            location=state.location,
            last_error=state.last_error,
            completed_at=state.completed_at,
        )


class ObjectStatus(BaseModel):
    """Current replication and backup state of a stored object."""

    model_config = ConfigDict(frozen=True)

    object_id: str
    bucket: str
    object_key: str
    region: str
    checksum: str
    replication_status: CopyStatus
    backup_status: CopyStatus
    replication_targets: tuple[CopyTargetStatus, ...] = ()
    backup_targets: tuple[CopyTargetStatus, ...] = ()

    @classmethod
    def from_record(cls, record: ObjectRecord) -> ObjectStatus:
        return cls(
            object_id=record.object_id,
            bucket=record.bucket,
            object_key=record.object_key,
            region=record.region,
            checksum=record.checksum,
            replication_status=record.replication_status,
            backup_status=record.backup_status,
            replication_targets=tuple(
                CopyTargetStatus.from_state(s) for s in record.replication.values()
            ),
            backup_targets=tuple(CopyTargetStatus.from_state(s) for s in record.backup.values()),
        )
