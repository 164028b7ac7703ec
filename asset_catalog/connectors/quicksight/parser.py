"""Parse QuickSight definitions into typed asset views.

Produces the ``ParsedAsset`` variants consumed by the lineage resolver and the
catalog builder: dataset references, visual fields, calculated fields with
their ``{Field}`` references, physical tables and their upstream datasources.

All parsing is best-effort: unexpected shapes are skipped rather than raised,
so one odd asset never stops a lineage or catalog build.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import sqlglot
import sqlglot.expressions as exp

from asset_catalog.models.assets import (
    AnalysisAsset,
    CalculatedFieldDefinition,
    DashboardAsset,
    DatasetAsset,
    DatasetReference,
    DatasourceAsset,
    FieldReference,
    FilterSummary,
    ParameterSummary,
    ParsedAsset,
    PhysicalTable,
    SheetSummary,
    TableKind,
    arn_resource_id,
)
from asset_catalog.models.schema import AssetRecord, AssetType

logger = logging.getLogger(__name__)

UPLOADED_FILE = "Uploaded File"

_BRACKET_REF = re.compile(r"\{([^{}]+)\}")

# Checked in order against the upstream datasource reference.
_ENGINE_MARKERS: tuple[tuple[str, str], ...] = (
    ("redshift", "Redshift"),
    ("athena", "Athena"),
    ("rds", "RDS"),
    ("aurora", "Aurora"),
    ("postgresql", "PostgreSQL"),
    ("mysql", "MySQL"),
)

_PARAMETER_KINDS: tuple[tuple[str, str], ...] = (
    ("StringParameterDeclaration", "String"),
    ("IntegerParameterDeclaration", "Integer"),
    ("DecimalParameterDeclaration", "Decimal"),
    ("DateTimeParameterDeclaration", "DateTime"),
)

_FILTER_KINDS = ("CategoryFilter", "NumericRangeFilter", "NumericEqualityFilter", "TimeRangeFilter", "TimeEqualityFilter")


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


# ---------------------------------------------------------------------------
# Module-level helpers
# ---------------------------------------------------------------------------


def extract_bracket_references(expression: Optional[str]) -> list[str]:
    """Distinct ``{FieldName}`` references of a calculated-field expression, in order."""
    refs: list[str] = []
    for match in _BRACKET_REF.finditer(expression or ""):
        name = match.group(1).strip()
        if name and name not in refs:
            refs.append(name)
    return refs


def infer_datasource_type(tables: list[PhysicalTable]) -> str:
    """Classify a dataset by the shape of its first physical table."""
    if not tables:
        return UPLOADED_FILE
    table = tables[0]
    if table.kind == TableKind.S3:
        return "S3"
    if table.kind == TableKind.RELATIONAL:
        reference = (table.datasource_arn or "").lower()
        for marker, label in _ENGINE_MARKERS:
            if marker in reference:
                return label
        return "Database"
    if table.kind == TableKind.CUSTOM_SQL:
        return "Custom SQL"
    return UPLOADED_FILE


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class DefinitionParser:
    """Turn persisted asset records into ``ParsedAsset`` variants."""

    def __init__(self, sql_dialect: Optional[str] = None):
        self.sql_dialect = sql_dialect

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def parse(self, record: AssetRecord) -> ParsedAsset:
        if record.asset_type == AssetType.DASHBOARD:
            return self.parse_dashboard(record)
        if record.asset_type == AssetType.ANALYSIS:
            return self.parse_analysis(record)
        if record.asset_type == AssetType.DATASET:
            return self.parse_dataset(record)
        if record.asset_type == AssetType.DATASOURCE:
            return self.parse_datasource(record)
        raise ValueError(f"Unsupported asset type: {record.asset_type!r}")

    def parse_dashboard(self, record: AssetRecord) -> DashboardAsset:
        dashboard = _as_dict(record.definition.get("Dashboard"))
        version = _as_dict(dashboard.get("Version"))
        body = _as_dict(record.definition.get("Definition"))

        datasets = self._dataset_references(body)
        if not datasets:
            # Published versions list their datasets even without a definition.
            datasets = [
                DatasetReference(identifier=arn_resource_id(arn) or arn, arn=arn)
                for arn in _as_list(version.get("DataSetArns"))
                if isinstance(arn, str) and arn
            ]

        return DashboardAsset(
            asset_id=record.asset_id,
            name=record.name,
            arn=record.arn or dashboard.get("Arn"),
            source_analysis_id=arn_resource_id(version.get("SourceEntityArn")),
            version_number=version.get("VersionNumber"),
            datasets=datasets,
            **self._visual_parts(body),
        )

    def parse_analysis(self, record: AssetRecord) -> AnalysisAsset:
        analysis = _as_dict(record.definition.get("Analysis"))
        body = _as_dict(record.definition.get("Definition"))
        datasets = self._dataset_references(body)
        if not datasets:
            datasets = [
                DatasetReference(identifier=arn_resource_id(arn) or arn, arn=arn)
                for arn in _as_list(analysis.get("DataSetArns"))
                if isinstance(arn, str) and arn
            ]
        return AnalysisAsset(
            asset_id=record.asset_id,
            name=record.name,
            arn=record.arn or analysis.get("Arn"),
            datasets=datasets,
            **self._visual_parts(body),
        )

    def parse_dataset(self, record: AssetRecord) -> DatasetAsset:
        dataset = _as_dict(record.definition.get("DataSet")) or record.definition

        tables = [
            self._physical_table(table_id, table)
            for table_id, table in _as_dict(dataset.get("PhysicalTableMap")).items()
            if isinstance(table, dict)
        ]

        calculated: list[CalculatedFieldDefinition] = []
        for logical in _as_dict(dataset.get("LogicalTableMap")).values():
            for transform in _as_list(_as_dict(logical).get("DataTransforms")):
                operation = _as_dict(_as_dict(transform).get("CreateColumnsOperation"))
                for column in _as_list(operation.get("Columns")):
                    column = _as_dict(column)
                    name = column.get("ColumnName") or column.get("ColumnId")
                    expression = column.get("Expression")
                    if name and expression:
                        calculated.append(
                            CalculatedFieldDefinition(
                                name=name,
                                expression=expression,
                                references=extract_bracket_references(expression),
                            )
                        )
        calculated_names = {c.name for c in calculated}

        fields: list[FieldReference] = []
        seen: set[str] = set()
        for table in tables:
            for column in table.columns:
                if column.field_name not in seen:
                    seen.add(column.field_name)
                    fields.append(column)
        for column in _as_list(dataset.get("OutputColumns")):
            column = _as_dict(column)
            name = column.get("Name")
            if name and name not in seen and name not in calculated_names:
                seen.add(name)
                fields.append(FieldReference(field_id=name, field_name=name, data_type=column.get("Type")))

        return DatasetAsset(
            asset_id=record.asset_id,
            name=record.name,
            arn=record.arn or dataset.get("Arn"),
            import_mode=dataset.get("ImportMode"),
            datasource_type=infer_datasource_type(tables),
            physical_tables=tables,
            fields=fields,
            calculated_fields=calculated,
        )

    def parse_datasource(self, record: AssetRecord) -> DatasourceAsset:
        datasource = _as_dict(record.definition.get("DataSource")) or record.definition
        return DatasourceAsset(
            asset_id=record.asset_id,
            name=record.name,
            arn=record.arn or datasource.get("Arn"),
            datasource_type=datasource.get("Type") or record.extra_metadata.get("datasource_type"),
            status=datasource.get("Status"),
            is_uploaded_file=bool(record.extra_metadata.get("is_uploaded_file")),
        )

    def extract_sql_tables(self, sql: str) -> list[str]:
        """Return ``schema.table`` names referenced by *sql*, CTE names excluded."""
        try:
            statements = sqlglot.parse(sql, dialect=self.sql_dialect, error_level=sqlglot.ErrorLevel.WARN)
        except Exception as exc:
            logger.warning("sqlglot parse error in custom SQL: %s", exc)
            return []

        tables: list[str] = []
        for stmt in statements:
            if stmt is None:
                continue
            cte_names = {cte.alias.lower() for cte in stmt.find_all(exp.CTE)}
            for table_node in stmt.find_all(exp.Table):
                name = table_node.name
                if not name or name.lower() in cte_names:
                    continue
                qualified = f"{table_node.db}.{name}" if table_node.db else name
                if qualified not in tables:
                    tables.append(qualified)
        return tables

    # ------------------------------------------------------------------
    # Datasets
    # ------------------------------------------------------------------

    def _physical_table(self, table_id: str, table: dict[str, Any]) -> PhysicalTable:
        if "RelationalTable" in table:
            body = _as_dict(table["RelationalTable"])
            return PhysicalTable(
                table_id=table_id,
                kind=TableKind.RELATIONAL,
                datasource_arn=body.get("DataSourceArn"),
                table_name=body.get("Name"),
                schema_name=body.get("Schema"),
                columns=self._input_columns(body),
            )
        if "CustomSql" in table:
            body = _as_dict(table["CustomSql"])
            sql = body.get("SqlQuery") or ""
            return PhysicalTable(
                table_id=table_id,
                kind=TableKind.CUSTOM_SQL,
                datasource_arn=body.get("DataSourceArn"),
                table_name=body.get("Name"),
                sql_query=sql or None,
                source_tables=self.extract_sql_tables(sql) if sql else [],
                columns=self._input_columns(body),
            )
        if "S3Source" in table:
            body = _as_dict(table["S3Source"])
            return PhysicalTable(
                table_id=table_id,
                kind=TableKind.S3,
                datasource_arn=body.get("DataSourceArn"),
                columns=self._input_columns(body),
            )
        return PhysicalTable(table_id=table_id)

    @staticmethod
    def _input_columns(body: dict[str, Any]) -> list[FieldReference]:
        columns = _as_list(body.get("InputColumns")) or _as_list(body.get("Columns"))
        refs: list[FieldReference] = []
        for column in columns:
            column = _as_dict(column)
            name = column.get("Name")
            if name:
                refs.append(FieldReference(field_id=name, field_name=name, data_type=column.get("Type")))
        return refs

    # ------------------------------------------------------------------
    # Dashboards / analyses
    # ------------------------------------------------------------------

    @staticmethod
    def _dataset_references(body: dict[str, Any]) -> list[DatasetReference]:
        """Dataset declarations in either the current or the older map shape."""
        declarations = _as_list(body.get("DataSetIdentifierDeclarations"))
        if declarations:
            refs = []
            for decl in declarations:
                decl = _as_dict(decl)
                arn = decl.get("DataSetArn")
                identifier = decl.get("Identifier") or arn_resource_id(arn)
                if identifier:
                    refs.append(DatasetReference(identifier=identifier, arn=arn))
            return refs

        identifier_map = _as_dict(body.get("DataSetIdentifierMap"))
        return [
            DatasetReference(identifier=key, arn=value if isinstance(value, str) and value else None)
            for key, value in identifier_map.items()
        ]

    def _visual_parts(self, body: dict[str, Any]) -> dict[str, Any]:
        calculated = []
        for calc in _as_list(body.get("CalculatedFields")):
            calc = _as_dict(calc)
            if calc.get("Name") and calc.get("Expression"):
                calculated.append(
                    CalculatedFieldDefinition(
                        name=calc["Name"],
                        expression=calc["Expression"],
                        dataset_identifier=calc.get("DataSetIdentifier"),
                        references=extract_bracket_references(calc["Expression"]),
                    )
                )

        sheets: list[SheetSummary] = []
        fields: list[FieldReference] = []
        for sheet in _as_list(body.get("Sheets")):
            sheet = _as_dict(sheet)
            visuals = _as_list(sheet.get("Visuals"))
            sheets.append(
                SheetSummary(
                    sheet_id=sheet.get("SheetId") or "",
                    name=sheet.get("Name"),
                    visual_count=len(visuals),
                )
            )
            for visual in visuals:
                for visual_body in _as_dict(visual).values():
                    wells = self._field_wells(_as_dict(visual_body))
                    if wells is not None:
                        self._collect_fields(wells, fields)

        return {
            "calculated_fields": calculated,
            "fields": _dedupe_fields(fields),
            "sheets": sheets,
            "parameters": self._parameters(body),
            "filters": self._filters(body),
        }

    @staticmethod
    def _field_wells(visual_body: dict[str, Any]) -> Optional[Any]:
        for container in ("ChartConfiguration", "Configuration"):
            wells = _as_dict(visual_body.get(container)).get("FieldWells")
            if wells is not None:
                return wells
        return visual_body.get("FieldWells")

    def _collect_fields(self, node: Any, out: list[FieldReference]) -> None:
        """Walk a FieldWells tree collecting referenced columns."""
        if isinstance(node, list):
            for item in node:
                self._collect_fields(item, out)
            return
        if not isinstance(node, dict):
            return

        if node.get("FieldId") and node.get("ColumnName"):
            out.append(
                FieldReference(
                    field_id=node["FieldId"],
                    field_name=node["ColumnName"],
                    dataset_identifier=node.get("DataSetIdentifier"),
                )
            )

        for key, value in node.items():
            if key.endswith(("DimensionField", "MeasureField")) and isinstance(value, dict):
                column = _as_dict(value.get("Column"))
                if column.get("ColumnName"):
                    out.append(
                        FieldReference(
                            field_id=value.get("FieldId") or column["ColumnName"],
                            field_name=column["ColumnName"],
                            dataset_identifier=column.get("DataSetIdentifier"),
                        )
                    )
                    continue
            self._collect_fields(value, out)

    @staticmethod
    def _parameters(body: dict[str, Any]) -> list[ParameterSummary]:
        parameters = []
        for decl in _as_list(body.get("ParameterDeclarations")):
            decl = _as_dict(decl)
            for key, label in _PARAMETER_KINDS:
                inner = _as_dict(decl.get(key))
                if inner.get("Name"):
                    static = _as_list(_as_dict(inner.get("DefaultValues")).get("StaticValues"))
                    parameters.append(
                        ParameterSummary(
                            name=inner["Name"],
                            type=label,
                            default_value=static[0] if static else None,
                        )
                    )
                    break
        return parameters

    @staticmethod
    def _filters(body: dict[str, Any]) -> list[FilterSummary]:
        filters = []
        for group in _as_list(body.get("FilterGroups")):
            group = _as_dict(group)
            for flt in _as_list(group.get("Filters")):
                flt = _as_dict(flt)
                for kind in _FILTER_KINDS:
                    inner = _as_dict(flt.get(kind))
                    if inner:
                        column = _as_dict(inner.get("Column"))
                        filters.append(
                            FilterSummary(
                                filter_id=inner.get("FilterId") or group.get("FilterGroupId") or "",
                                column_name=column.get("ColumnName"),
                                dataset_identifier=column.get("DataSetIdentifier"),
                            )
                        )
                        break
        return filters


def _dedupe_fields(fields: list[FieldReference]) -> list[FieldReference]:
    seen: set[tuple[str, Optional[str]]] = set()
    unique = []
    for f in fields:
        key = (f.field_name, f.dataset_identifier)
        if key not in seen:
            seen.add(key)
            unique.append(f)
    return unique


_default_parser = DefinitionParser()


def parse_asset(record: AssetRecord) -> ParsedAsset:
    """Parse *record* with the default (dialect-agnostic) parser."""
    return _default_parser.parse(record)
