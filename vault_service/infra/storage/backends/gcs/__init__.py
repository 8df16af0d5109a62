"""Google Cloud Storage backend."""

from .backend import GCSBackend, map_gcs_error

__all__ = ["GCSBackend", "map_gcs_error"]
