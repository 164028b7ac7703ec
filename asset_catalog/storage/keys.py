"""Key layout inside the blob store."""

from asset_catalog.models.schema import AssetType

SESSIONS_PREFIX = "sessions/"
ASSETS_PREFIX = "assets/"
MASTER_INDEX_KEY = "assets/index/master-index.json"
EXPORT_SUMMARY_KEY = "assets/export-summary.json"
DATA_CATALOG_KEY = "catalog/data-catalog.json"
FIELD_METADATA_PREFIX = "field-metadata/"


def session_key(session_id: str) -> str:
    return f"{SESSIONS_PREFIX}{session_id}.json"


def asset_prefix(asset_type: AssetType) -> str:
    return f"{ASSETS_PREFIX}{asset_type.collection}/"


def asset_key(asset_type: AssetType, asset_id: str) -> str:
    return f"{asset_prefix(asset_type)}{asset_id}.json"


def field_metadata_key(source_type: str, source_id: str, field_name: str) -> str:
    return f"{FIELD_METADATA_PREFIX}{source_type}/{source_id}/{field_name}.json"


def id_from_key(key: str) -> str:
    """``assets/datasets/abc.json`` -> ``abc``."""
    name = key.rsplit("/", 1)[-1]
    return name[: -len(".json")] if name.endswith(".json") else name
