"""Low-level QuickSight API calls (boto3) and provider error classification.

Every function here is synchronous and takes a boto3 ``quicksight`` client;
the connector runs them in a worker thread and wraps failures with
``classify_error``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ReadTimeoutError,
)
from botocore.parsers import ResponseParserError

from asset_catalog.connectors.base import (
    AccessDeniedError,
    AssetNotFoundError,
    MalformedResponseError,
    RateLimitedError,
    ServiceUnavailableError,
    SourceError,
)
from asset_catalog.models.schema import AssetSummary, AssetType

# (list operation, summary list key, id key)
LIST_OPERATIONS: dict[AssetType, tuple[str, str, str]] = {
    AssetType.DASHBOARD: ("list_dashboards", "DashboardSummaryList", "DashboardId"),
    AssetType.ANALYSIS: ("list_analyses", "AnalysisSummaryList", "AnalysisId"),
    AssetType.DATASET: ("list_data_sets", "DataSetSummaries", "DataSetId"),
    AssetType.DATASOURCE: ("list_data_sources", "DataSources", "DataSourceId"),
}

# (permissions operation, id parameter)
PERMISSION_OPERATIONS: dict[AssetType, tuple[str, str]] = {
    AssetType.DASHBOARD: ("describe_dashboard_permissions", "DashboardId"),
    AssetType.ANALYSIS: ("describe_analysis_permissions", "AnalysisId"),
    AssetType.DATASET: ("describe_data_set_permissions", "DataSetId"),
    AssetType.DATASOURCE: ("describe_data_source_permissions", "DataSourceId"),
}

ARN_RESOURCE_SEGMENTS: dict[AssetType, str] = {
    AssetType.DASHBOARD: "dashboard",
    AssetType.ANALYSIS: "analysis",
    AssetType.DATASET: "dataset",
    AssetType.DATASOURCE: "datasource",
}

_RETRYABLE_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "TooManyRequestsException",
    "RequestLimitExceeded",
    "SlowDown",
    "ServiceUnavailable",
    "ServiceUnavailableException",
})
_NOT_FOUND_CODES = frozenset({"ResourceNotFoundException", "NotFoundException"})
_ACCESS_DENIED_CODES = frozenset({
    "AccessDeniedException",
    "UnsupportedUserEditionException",
})

_RESPONSE_NOISE = ("ResponseMetadata", "RequestId", "Status")


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def classify_error(exc: Exception, operation: str) -> SourceError:
    """Map a botocore failure to the source error taxonomy."""
    if isinstance(exc, SourceError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{operation}: {code or 'ClientError'}: {error.get('Message', exc)}"
        if code in _RETRYABLE_CODES or status in (429, 502, 503):
            if code.startswith("ServiceUnavailable") or status in (502, 503):
                return ServiceUnavailableError(message, code)
            return RateLimitedError(message, code)
        if code in _NOT_FOUND_CODES or status == 404:
            return AssetNotFoundError(message, code)
        if code in _ACCESS_DENIED_CODES or status == 403:
            return AccessDeniedError(message, code)
        return SourceError(message, code)

    if isinstance(exc, (BotoConnectionError, ReadTimeoutError)):
        return ServiceUnavailableError(f"{operation}: {exc}", type(exc).__name__)
    if isinstance(exc, ResponseParserError):
        return MalformedResponseError(f"{operation}: {exc}", type(exc).__name__)
    if isinstance(exc, BotoCoreError):
        return SourceError(f"{operation}: {exc}", type(exc).__name__)
    return SourceError(f"{operation}: {exc}", type(exc).__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_arn(region: str, account_id: str, asset_type: AssetType, asset_id: str) -> str:
    segment = ARN_RESOURCE_SEGMENTS[asset_type]
    return f"arn:aws:quicksight:{region}:{account_id}:{segment}/{asset_id}"


def _strip_noise(response: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in response.items() if k not in _RESPONSE_NOISE}


def _as_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def summary_from_item(asset_type: AssetType, item: dict[str, Any]) -> AssetSummary:
    """Normalise one provider summary item."""
    _, _, id_key = LIST_OPERATIONS[asset_type]
    return AssetSummary(
        asset_id=item.get(id_key) or item.get("Id") or "",
        name=item.get("Name") or "",
        arn=item.get("Arn"),
        created_time=_as_datetime(item.get("CreatedTime")),
        last_updated=_as_datetime(item.get("LastUpdatedTime")),
        raw=item,
    )


# ---------------------------------------------------------------------------
# API calls
# ---------------------------------------------------------------------------


def list_assets_page(
    client,
    account_id: str,
    asset_type: AssetType,
    continuation_token: Optional[str],
    page_size: int,
) -> tuple[list[dict[str, Any]], Optional[str]]:
    """Return raw summary items of one page and the next token."""
    operation, list_key, _ = LIST_OPERATIONS[asset_type]
    kwargs: dict[str, Any] = {"AwsAccountId": account_id, "MaxResults": page_size}
    if continuation_token:
        kwargs["NextToken"] = continuation_token
    response = getattr(client, operation)(**kwargs)
    return list(response.get(list_key) or []), response.get("NextToken")


def describe_asset(client, account_id: str, asset_type: AssetType, asset_id: str) -> dict[str, Any]:
    """Return the provider definition of one asset.

    Dashboards and analyses combine the metadata call with the definition
    call: ``{"Dashboard": …, "Definition": …}``.
    """
    if asset_type == AssetType.DASHBOARD:
        meta = client.describe_dashboard(AwsAccountId=account_id, DashboardId=asset_id)
        definition = client.describe_dashboard_definition(
            AwsAccountId=account_id, DashboardId=asset_id
        )
        return {"Dashboard": meta.get("Dashboard", {}), **_definition_part(definition)}
    if asset_type == AssetType.ANALYSIS:
        meta = client.describe_analysis(AwsAccountId=account_id, AnalysisId=asset_id)
        definition = client.describe_analysis_definition(
            AwsAccountId=account_id, AnalysisId=asset_id
        )
        return {"Analysis": meta.get("Analysis", {}), **_definition_part(definition)}
    if asset_type == AssetType.DATASET:
        response = client.describe_data_set(AwsAccountId=account_id, DataSetId=asset_id)
        return _strip_noise(response)
    if asset_type == AssetType.DATASOURCE:
        response = client.describe_data_source(AwsAccountId=account_id, DataSourceId=asset_id)
        return _strip_noise(response)
    raise ValueError(f"Unsupported asset type: {asset_type!r}")


def _definition_part(response: dict[str, Any]) -> dict[str, Any]:
    part: dict[str, Any] = {"Definition": response.get("Definition", {})}
    if response.get("Errors"):
        part["DefinitionErrors"] = response["Errors"]
    return part


def describe_permissions(
    client, account_id: str, asset_type: AssetType, asset_id: str
) -> list[dict[str, Any]]:
    operation, id_param = PERMISSION_OPERATIONS[asset_type]
    response = getattr(client, operation)(AwsAccountId=account_id, **{id_param: asset_id})
    return list(response.get("Permissions") or [])


def list_tags(client, resource_arn: str) -> dict[str, str]:
    response = client.list_tags_for_resource(ResourceArn=resource_arn)
    return {t["Key"]: t.get("Value", "") for t in response.get("Tags") or [] if "Key" in t}
