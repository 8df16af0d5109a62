"""Storage backends package.

Provides protocol-based abstraction for multiple object-store providers.
"""

from .factory import create_storage_backend, create_storage_backends
from .memory import InMemoryBackend
from .protocol import PutResult, StorageBackend

__all__ = [
    "InMemoryBackend",
    "PutResult",
    "StorageBackend",
    "create_storage_backend",
    "create_storage_backends",
]
