"""JSON Schema definitions and validation helpers for persisted asset blobs.

Blobs are written by this service, but the store is shared and long-lived, so
the index builder validates every blob before trusting it.  The envelope
schema is strict about the keys the pipeline relies on; the per-type schemas
only constrain the shape of the provider payload and use
``additionalProperties: true`` so new provider fields are accepted.

Usage::

    from asset_catalog.models.validators import validate_asset_blob
    errors = validate_asset_blob(blob, AssetType.DATASET)
    if errors:
        logger.warning("Skipping invalid blob: %s", errors)
"""

from typing import Any

import jsonschema
from jsonschema import ValidationError

from asset_catalog.models.schema import AssetType

# ---------------------------------------------------------------------------
# Envelope schema
# ---------------------------------------------------------------------------

ASSET_ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["asset_id", "asset_type", "name", "definition"],
    "properties": {
        "asset_id": {"type": "string", "minLength": 1},
        "asset_type": {"type": "string", "enum": [t.value for t in AssetType]},
        "name": {"type": "string"},
        "arn": {"type": ["string", "null"]},
        "definition": {"type": "object"},
        "tags": {"type": "object", "additionalProperties": {"type": "string"}},
        "permissions": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["principal"],
                "properties": {
                    "principal": {"type": "string"},
                    "actions": {"type": "array", "items": {"type": "string"}},
                },
            },
        },
        "extra_metadata": {"type": "object"},
    },
    "additionalProperties": True,
}

# ---------------------------------------------------------------------------
# Per-type definition schemas
# ---------------------------------------------------------------------------

DEFINITION_SCHEMAS: dict[AssetType, dict[str, Any]] = {
    AssetType.DASHBOARD: {
        "type": "object",
        "properties": {
            "Dashboard": {"type": "object"},
            "Definition": {"type": "object"},
        },
        "additionalProperties": True,
    },
    AssetType.ANALYSIS: {
        "type": "object",
        "properties": {
            "Analysis": {"type": "object"},
            "Definition": {"type": "object"},
        },
        "additionalProperties": True,
    },
    AssetType.DATASET: {
        "type": "object",
        "properties": {
            "DataSet": {
                "type": "object",
                "properties": {
                    "PhysicalTableMap": {"type": "object"},
                    "LogicalTableMap": {"type": "object"},
                    "OutputColumns": {"type": "array"},
                    "ImportMode": {"type": "string"},
                },
            },
        },
        "additionalProperties": True,
    },
    AssetType.DATASOURCE: {
        "type": "object",
        "properties": {
            "DataSource": {
                "type": "object",
                "properties": {
                    "Type": {"type": "string"},
                    "Status": {"type": "string"},
                },
            },
        },
        "additionalProperties": True,
    },
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def validate_metadata(data: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """Validate *data* against *schema*.

    Returns a (possibly empty) list of human-readable error messages.
    An empty list means the data is valid.
    """
    validator = jsonschema.Draft7Validator(schema)
    errors: list[ValidationError] = sorted(validator.iter_errors(data), key=lambda e: str(list(e.path)))
    return [e.message for e in errors]


def validate_asset_blob(blob: Any, asset_type: AssetType) -> list[str]:
    """Validate a persisted asset blob: envelope first, then its definition."""
    if not isinstance(blob, dict):
        return [f"expected an object, got {type(blob).__name__}"]
    errors = validate_metadata(blob, ASSET_ENVELOPE_SCHEMA)
    if errors:
        return errors
    if blob["asset_type"] != asset_type.value:
        return [f"asset_type {blob['asset_type']!r} does not match {asset_type.value!r}"]
    return validate_metadata(blob["definition"], DEFINITION_SCHEMAS[asset_type])
