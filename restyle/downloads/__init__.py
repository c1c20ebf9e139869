"""
Model downloads: background, cancellable, progress-tracked installs.
"""

from .download_manager import (
    CancelledStatus,
    Completed,
    DownloadManager,
    DownloadTask,
    Failed,
    Queued,
    Running,
    artifacts_for,
    status_to_dict,
)
from .progress import DownloadProgress, DownloadProgressTracker

__all__ = [
    'CancelledStatus',
    'Completed',
    'DownloadManager',
    'DownloadProgress',
    'DownloadProgressTracker',
    'DownloadTask',
    'Failed',
    'Queued',
    'Running',
    'artifacts_for',
    'status_to_dict',
]
