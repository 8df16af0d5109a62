"""Content optimization applied before upload.

Compression runs through a pluggable ``CompressionCodec`` (DEFLATE by
default). If compressing does not make the payload smaller the raw bytes are
stored and no codec is recorded, so ``restore`` is always the exact inverse
of ``optimize``.

Deduplication consults a ``DeduplicationIndex`` mapping the SHA-256 of the
original payload to the location of an object already holding those bytes.
On a hit the engine stores a small reference object instead of a second copy.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from typing import Protocol
import zlib

from vault_service.infra.storage.exceptions import IntegrityFailureError

logger = logging.getLogger(__name__)

REFERENCE_MAGIC = b"vault-ref/1\n"


class CompressionCodec(Protocol):
    """Reversible byte transform. ``name`` is persisted with each object."""

    name: str

    def compress(self, data: bytes) -> bytes: ...

    def decompress(self, data: bytes) -> bytes: ...


class DeflateCodec:
    """zlib-wrapped DEFLATE."""

    name = "deflate"

    def __init__(self, level: int = 6) -> None:
        self.level = level

    def compress(self, data: bytes) -> bytes:
        return zlib.compress(data, self.level)

    def decompress(self, data: bytes) -> bytes:
        return zlib.decompress(data)


@dataclass(frozen=True)
class DedupLocation:
    """Where the bytes of a deduplicated payload physically live."""

    bucket: str
    object_key: str
    region: str

    @property
    def catalog_id(self) -> str:
        return f"{self.bucket}/{self.object_key}"


class DeduplicationIndex(Protocol):
    """Checksum to location lookup table.

    Usually backed by a shared store so that every engine instance sees the
    same content; ``InMemoryDeduplicationIndex`` serves single processes.
    """

    async def lookup(self, digest: str) -> DedupLocation | None: ...

    async def record(self, digest: str, location: DedupLocation) -> None: ...

    async def forget(self, digest: str, location: DedupLocation) -> None: ...


class InMemoryDeduplicationIndex:
    def __init__(self) -> None:
        self._entries: dict[str, DedupLocation] = {}

    async def lookup(self, digest: str) -> DedupLocation | None:
        return self._entries.get(digest)

    async def record(self, digest: str, location: DedupLocation) -> None:
        self._entries.setdefault(digest, location)

    async def forget(self, digest: str, location: DedupLocation) -> None:
        # Only drop the entry if it still points at this location
        if self._entries.get(digest) == location:
            del self._entries[digest]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class OptimizedPayload:
    """Output of ``ContentOptimizer.optimize``.

    Attributes:
        data: Bytes to store
        original_size: Size of the payload before optimization
        digest: SHA-256 hex digest of the original payload
        compression_ratio: Stored size over original size (1.0 when uncompressed)
        deduplication_saved: Bytes not stored thanks to deduplication
        codec: Name of the codec that produced ``data``, or None
        duplicate_of: Location referenced when ``data`` is a dedup reference
    """

    data: bytes
    original_size: int
    digest: str
    compression_ratio: float = 1.0
    deduplication_saved: int = 0
    codec: str | None = None
    duplicate_of: DedupLocation | None = None


def compute_checksum(data: bytes) -> str:
    """SHA-256 hex digest of the stored bytes."""
    return hashlib.sha256(data).hexdigest()


def encode_reference(location: DedupLocation) -> bytes:
    return REFERENCE_MAGIC + location.catalog_id.encode("utf-8")


def decode_reference(data: bytes) -> str:
    """Extract the catalogue id from a reference object.

    Raises:
        IntegrityFailureError: The bytes are not a reference object.
    """
    if not data.startswith(REFERENCE_MAGIC):
        raise IntegrityFailureError(
            "Stored object is not a deduplication reference",
            metadata={"size": len(data)},
        )
    return data[len(REFERENCE_MAGIC) :].decode("utf-8")


class ContentOptimizer:
    """Applies compression and deduplication to payloads.

    Args:
        compression: Enable compression
        deduplication: Enable deduplication (requires ``index``)
        codec: Codec used for new objects (defaults to DeflateCodec)
        index: Deduplication index
        extra_codecs: Additional codecs accepted by ``restore``
    """

    def __init__(
        self,
        *,
        compression: bool = True,
        deduplication: bool = True,
        codec: CompressionCodec | None = None,
        index: DeduplicationIndex | None = None,
        extra_codecs: tuple[CompressionCodec, ...] = (),
    ) -> None:
        self.compression = compression
        self.codec = codec or DeflateCodec()
        self.index = index if index is not None else InMemoryDeduplicationIndex()
        self.deduplication = deduplication
        self._codecs = {c.name: c for c in (self.codec, *extra_codecs)}

    @property
    def enabled(self) -> bool:
        return self.compression or self.deduplication

    async def optimize(
        self,
        data: bytes,
        *,
        exclude: str | None = None,
        deduplicate: bool = True,
    ) -> OptimizedPayload:
        """Optimize a payload for storage.

        Args:
            data: Original payload
            exclude: Catalogue id that must not be returned as a duplicate
                (the object being written)
            deduplicate: Consult the deduplication index
        """
        digest = hashlib.sha256(data).hexdigest()
        original_size = len(data)

        if self.deduplication and deduplicate:
            location = await self.index.lookup(digest)
            if location is not None and location.catalog_id != exclude:
                reference = encode_reference(location)
                logger.debug(
                    "Duplicate payload found",
                    extra={"digest": digest, "duplicate_of": location.catalog_id},
                )
                return OptimizedPayload(
                    data=reference,
                    original_size=original_size,
                    digest=digest,
                    deduplication_saved=max(original_size - len(reference), 0),
                    duplicate_of=location,
                )

        if self.compression and original_size:
            compressed = self.codec.compress(data)
            if len(compressed) < original_size:
                return OptimizedPayload(
                    data=compressed,
                    original_size=original_size,
                    digest=digest,
                    compression_ratio=round(len(compressed) / original_size, 4),
                    codec=self.codec.name,
                )

        return OptimizedPayload(data=data, original_size=original_size, digest=digest)

    def restore(self, data: bytes, codec: str | None) -> bytes:
        """Reverse ``optimize`` for a non-reference payload.

        Raises:
            IntegrityFailureError: Unknown codec or undecodable bytes.
        """
        if codec is None:
            return data
        try:
            return self._codecs[codec].decompress(data)
        except KeyError:
            raise IntegrityFailureError(
                f"Unknown compression codec '{codec}'",
                metadata={"codec": codec},
            ) from None
        except zlib.error as e:
            raise IntegrityFailureError(
                f"Stored payload could not be decompressed: {e}",
                metadata={"codec": codec},
            ) from e

    async def remember(self, payload: OptimizedPayload, location: DedupLocation) -> None:
        """Register stored content so later uploads can deduplicate against it."""
        if self.deduplication and payload.duplicate_of is None:
            await self.index.record(payload.digest, location)

    async def forget(self, digest: str, location: DedupLocation) -> None:
        if self.deduplication:
            await self.index.forget(digest, location)
