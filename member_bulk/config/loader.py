from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import AppConfig, BulkConfig, DatabaseConfig
from ..models.lookup_catalog import LookupCatalog

"""Config and lookup catalog loader.

Responsibilities:
- Load YAML config/app.yml and the lookup catalog asset
- Validate both against their JSON schemas (schemas/ next to this module)
- Apply defaults (packaged catalog, bulk limits)
"""

_CONFIG_DIR = Path(__file__).parent
SCHEMA_DIR = _CONFIG_DIR / "schemas"
APP_SCHEMA_PATH = SCHEMA_DIR / "app_config.schema.json"
CATALOG_SCHEMA_PATH = SCHEMA_DIR / "lookup_catalog.schema.json"
DEFAULT_CATALOG_PATH = _CONFIG_DIR / "lookups.yml"


class ConfigError(Exception):
    pass


def _validate_against(data: dict[str, Any], schema_path: Path) -> None:
    """Validate parsed YAML data against a JSON schema file.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            data fails schema validation.
    """
    if not schema_path.exists():
        raise ConfigError(f"config schema not found: {schema_path}")
    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping: {path}")
    return data


def load_config(path: Path) -> AppConfig:
    data = _read_yaml(path)
    _validate_against(data, APP_SCHEMA_PATH)

    db_raw = data.get("database", {})
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    defaults = BulkConfig()
    bulk_raw = data.get("bulk", {})
    bulk = BulkConfig(
        max_upload_bytes=bulk_raw.get("max_upload_bytes", defaults.max_upload_bytes),
        data_sheet_name=bulk_raw.get("data_sheet_name", defaults.data_sheet_name),
        bcrypt_rounds=bulk_raw.get("bcrypt_rounds", defaults.bcrypt_rounds),
        page_size=bulk_raw.get("page_size", defaults.page_size),
    )
    catalog_path = None
    if data.get("lookup_catalog"):
        # 相対パスは設定ファイルの位置から解決
        catalog_path = Path(data["lookup_catalog"])
        if not catalog_path.is_absolute():
            catalog_path = (path.parent / catalog_path).resolve()
    return AppConfig(database=db, bulk=bulk, lookup_catalog=catalog_path)


def load_lookup_catalog(path: Path | None = None) -> LookupCatalog:
    """Load the closed-vocabulary catalog (packaged default when path is None)."""
    data = _read_yaml(path or DEFAULT_CATALOG_PATH)
    _validate_against(data, CATALOG_SCHEMA_PATH)
    return LookupCatalog.from_dict(data)
