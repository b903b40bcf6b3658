"""
Mirror Sync Module

Per-asset mirror worker and the pipeline that drives it across projects.
"""

from .pipeline import SyncPipeline
from .worker import MirrorWorker, download_asset_to_file

__all__ = [
    "SyncPipeline",
    "MirrorWorker",
    "download_asset_to_file",
]
