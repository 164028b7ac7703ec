"""Typed views of provider definitions, one per asset kind.

``ParsedAsset`` is a union discriminated by ``kind``; consumers dispatch on
the concrete class and raise on anything they do not recognise, so a new
asset kind has to be handled explicitly everywhere it flows.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field

from asset_catalog.models.schema import AssetType


def arn_resource_id(arn: Optional[str]) -> Optional[str]:
    """Return the trailing path segment of an ARN (the resource id)."""
    if not arn:
        return None
    tail = arn.rsplit("/", 1)[-1]
    return tail or None


class TableKind(str, Enum):
    RELATIONAL = "relational"
    CUSTOM_SQL = "custom_sql"
    S3 = "s3"
    UNKNOWN = "unknown"


class FieldReference(BaseModel):
    field_id: str
    field_name: str
    data_type: Optional[str] = None
    dataset_identifier: Optional[str] = None


class CalculatedFieldDefinition(BaseModel):
    name: str
    expression: str
    dataset_identifier: Optional[str] = None
    references: list[str] = Field(default_factory=list)


class DatasetReference(BaseModel):
    """A dataset declared by an analysis or dashboard."""

    identifier: str
    arn: Optional[str] = None

    @property
    def dataset_id(self) -> str:
        return arn_resource_id(self.arn) or self.identifier


class PhysicalTable(BaseModel):
    table_id: str
    kind: TableKind = TableKind.UNKNOWN
    datasource_arn: Optional[str] = None
    table_name: Optional[str] = None
    schema_name: Optional[str] = None
    sql_query: Optional[str] = None
    source_tables: list[str] = Field(default_factory=list)
    columns: list[FieldReference] = Field(default_factory=list)

    @property
    def datasource_id(self) -> Optional[str]:
        return arn_resource_id(self.datasource_arn)


class SheetSummary(BaseModel):
    sheet_id: str
    name: Optional[str] = None
    visual_count: int = 0


class ParameterSummary(BaseModel):
    name: str
    type: Optional[str] = None
    default_value: Any = None


class FilterSummary(BaseModel):
    filter_id: str
    column_name: Optional[str] = None
    dataset_identifier: Optional[str] = None


# ---------------------------------------------------------------------------
# Asset variants
# ---------------------------------------------------------------------------


class _ParsedBase(BaseModel):
    asset_id: str
    name: str
    arn: Optional[str] = None

    @property
    def asset_type(self) -> AssetType:
        return AssetType(self.kind)  # type: ignore[attr-defined]


class _VisualAsset(_ParsedBase):
    datasets: list[DatasetReference] = Field(default_factory=list)
    fields: list[FieldReference] = Field(default_factory=list)
    calculated_fields: list[CalculatedFieldDefinition] = Field(default_factory=list)
    sheets: list[SheetSummary] = Field(default_factory=list)
    parameters: list[ParameterSummary] = Field(default_factory=list)
    filters: list[FilterSummary] = Field(default_factory=list)

    @property
    def visual_count(self) -> int:
        return sum(s.visual_count for s in self.sheets)


class DashboardAsset(_VisualAsset):
    kind: Literal["dashboard"] = "dashboard"
    source_analysis_id: Optional[str] = None
    version_number: Optional[int] = None


class AnalysisAsset(_VisualAsset):
    kind: Literal["analysis"] = "analysis"


class DatasetAsset(_ParsedBase):
    kind: Literal["dataset"] = "dataset"
    import_mode: Optional[str] = None
    datasource_type: str = "Uploaded File"
    physical_tables: list[PhysicalTable] = Field(default_factory=list)
    fields: list[FieldReference] = Field(default_factory=list)
    calculated_fields: list[CalculatedFieldDefinition] = Field(default_factory=list)

    @property
    def datasource_ids(self) -> list[str]:
        ids: list[str] = []
        for table in self.physical_tables:
            ds_id = table.datasource_id
            if ds_id and ds_id not in ids:
                ids.append(ds_id)
        return ids


class DatasourceAsset(_ParsedBase):
    kind: Literal["datasource"] = "datasource"
    datasource_type: Optional[str] = None
    status: Optional[str] = None
    is_uploaded_file: bool = False


ParsedAsset = Annotated[
    Union[DashboardAsset, AnalysisAsset, DatasetAsset, DatasourceAsset],
    Field(discriminator="kind"),
]
