"""
Remote model repository access.

RepositoryClient resolves repositories into CatalogEntry snapshots and opens
file streams for the Download Manager.
"""

from .repository_client import (
    MODEL_TYPE_BASE,
    MODEL_TYPE_STYLE,
    MODEL_TYPES,
    CatalogEntry,
    RepositoryClient,
    normalize_model_type,
    primary_file_for,
    validate_repo,
)

__all__ = [
    'MODEL_TYPE_BASE',
    'MODEL_TYPE_STYLE',
    'MODEL_TYPES',
    'CatalogEntry',
    'RepositoryClient',
    'normalize_model_type',
    'primary_file_for',
    'validate_repo',
]
