from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

"""Config dataclasses for the member bulk service.

These are the typed view of `config/app.yml` produced by
`member_bulk.config.loader.load_config`. The loader owns YAML parsing and
schema validation; this module only defines the shapes.
"""


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class BulkConfig:
    """Settings for the spreadsheet bulk pipeline."""
    max_upload_bytes: int = 5 * 1024 * 1024  # アップロード上限 (解析前に拒否)
    data_sheet_name: str = "Users"  # テンプレートのデータ入力シート名
    bcrypt_rounds: int = 10
    page_size: int = 1000  # execute_values の page_size


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object for the service and CLI."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    bulk: BulkConfig = field(default_factory=BulkConfig)
    lookup_catalog: Path | None = None  # None -> packaged default catalog
