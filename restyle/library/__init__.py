"""
Local model store: on-disk layout, install manifests, verification.
"""

from .model_store import (
    DiskSpace,
    LocalModel,
    ModelStore,
    StorageStats,
    StoreResult,
    StyleArtifacts,
    sanitize_repo,
)

__all__ = [
    'DiskSpace',
    'LocalModel',
    'ModelStore',
    'StorageStats',
    'StoreResult',
    'StyleArtifacts',
    'sanitize_repo',
]
