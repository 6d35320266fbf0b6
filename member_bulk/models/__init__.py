"""Domain models for the member directory bulk service.

This package contains the domain model classes used throughout the
application: configuration, lookup catalog, persisted members, and the
transient rows and results of the bulk pipeline.
"""

from .bulk_result import BulkResult, CommitStats, RowPartition
from .bulk_row import BulkRow, RowMode, RowRejection
from .config_models import AppConfig, BulkConfig, DatabaseConfig
from .lookup_catalog import LookupCatalog
from .member import MemberHeader, MemberProfile, MemberRecord, NewMember

__all__ = [
    # Configuration models
    "AppConfig",
    "BulkConfig",
    "DatabaseConfig",
    "LookupCatalog",
    # Persisted models
    "MemberHeader",
    "MemberProfile",
    "MemberRecord",
    "NewMember",
    # Processing models
    "BulkRow",
    "RowMode",
    "RowRejection",
    "RowPartition",
    "CommitStats",
    "BulkResult",
]
