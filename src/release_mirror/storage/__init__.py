"""
Storage Package

Storage abstraction for mirrored assets plus scratch space for downloads.
"""

from .base import BackendConfig, Storage
from .factories import create_local_storage, create_s3_storage, create_storage_from_config
from .staging import ScratchDirectoryManager

__all__ = [
    "BackendConfig",
    "Storage",
    "create_storage_from_config",
    "create_s3_storage",
    "create_local_storage",
    "ScratchDirectoryManager",
]
