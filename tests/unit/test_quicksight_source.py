"""Tests for the QuickSight and offline asset sources."""

import json
from datetime import datetime, timezone

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from asset_catalog.connectors import create_asset_source
from asset_catalog.connectors.base import (
    AccessDeniedError,
    AssetNotFoundError,
    MalformedResponseError,
    RateLimitedError,
    ServiceUnavailableError,
    SourceError,
)
from asset_catalog.connectors.quicksight.connector import LegacyDataSourceLister, QuickSightAssetSource
from asset_catalog.connectors.quicksight.extractor import build_arn, classify_error, summary_from_item
from asset_catalog.connectors.quicksight.offline import OfflineAssetSource
from asset_catalog.core.config import Settings
from asset_catalog.models.schema import AssetType
from tests.support import ACCOUNT, REGION, dataset_detail


def _client_error(code: str, status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": "boom"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "ListDashboards",
    )


class StubClient:
    """Answers the handful of QuickSight calls the source makes."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail_with: dict[str, Exception] = {}

    def _record(self, name, kwargs):
        self.calls.append((name, kwargs))
        if name in self.fail_with:
            raise self.fail_with[name]

    def list_dashboards(self, **kwargs):
        self._record("list_dashboards", kwargs)
        if kwargs.get("NextToken") == "t2":
            return {"DashboardSummaryList": [{"DashboardId": "dash2", "Name": "Two"}]}
        return {
            "DashboardSummaryList": [
                {
                    "DashboardId": "dash1",
                    "Name": "One",
                    "Arn": build_arn(REGION, ACCOUNT, AssetType.DASHBOARD, "dash1"),
                    "LastUpdatedTime": datetime(2024, 5, 1, tzinfo=timezone.utc),
                }
            ],
            "NextToken": "t2",
        }

    def list_data_sources(self, **kwargs):
        self._record("list_data_sources", kwargs)
        return {
            "DataSources": [
                {"DataSourceId": "src1", "Name": "Files", "DataSourceParameters": {}, "AlternateDataSourceParameters": [{}]},
                {"DataSourceId": "src2", "Name": "PG", "DataSourceParameters": {"PostgreSqlParameters": {"Host": "db"}}},
                {"Name": "broken"},
            ]
        }

    def describe_dashboard(self, **kwargs):
        self._record("describe_dashboard", kwargs)
        return {"Dashboard": {"DashboardId": kwargs["DashboardId"], "Name": "One"}, "RequestId": "r"}

    def describe_dashboard_definition(self, **kwargs):
        self._record("describe_dashboard_definition", kwargs)
        return {"Definition": {"Sheets": []}, "Errors": [{"Type": "PARAMETER_NOT_FOUND"}]}

    def describe_data_set(self, **kwargs):
        self._record("describe_data_set", kwargs)
        return {**dataset_detail(kwargs["DataSetId"], "Orders"), "RequestId": "r", "Status": 200}

    def describe_data_set_permissions(self, **kwargs):
        self._record("describe_data_set_permissions", kwargs)
        return {"Permissions": [{"Principal": "arn:aws:quicksight:::group/default/bi", "Actions": ["a"]}]}

    def list_tags_for_resource(self, **kwargs):
        self._record("list_tags_for_resource", kwargs)
        return {"Tags": [{"Key": "team", "Value": "bi"}, {"Value": "orphan"}]}


@pytest.fixture
def client():
    return StubClient()


@pytest.fixture
def source(client):
    return QuickSightAssetSource({"account_id": ACCOUNT, "region": REGION}, client=client)


class TestClassifyError:
    @pytest.mark.parametrize(
        "code, status, expected",
        [
            ("ThrottlingException", 400, RateLimitedError),
            ("SomethingElse", 429, RateLimitedError),
            ("ServiceUnavailableException", 503, ServiceUnavailableError),
            ("InternalFailure", 502, ServiceUnavailableError),
            ("ResourceNotFoundException", 404, AssetNotFoundError),
            ("AccessDeniedException", 403, AccessDeniedError),
        ],
    )
    def test_client_errors(self, code, status, expected):
        error = classify_error(_client_error(code, status), "op")
        assert type(error) is expected
        assert error.code == code

    def test_unknown_client_error_is_permanent(self):
        error = classify_error(_client_error("InvalidParameterValueException"), "op")
        assert type(error) is SourceError
        assert not error.retryable

    def test_connection_errors_are_transient(self):
        error = classify_error(EndpointConnectionError(endpoint_url="https://quicksight"), "op")
        assert isinstance(error, ServiceUnavailableError)
        assert error.retryable

    def test_source_errors_pass_through(self):
        original = AccessDeniedError("x")
        assert classify_error(original, "op") is original


class TestQuickSightSource:
    async def test_list_pages(self, source, client):
        lister = source.lister(AssetType.DASHBOARD)
        first = await lister.list_page(None, 100)
        assert [s.asset_id for s in first.items] == ["dash1"]
        assert first.items[0].last_updated == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert first.next_token == "t2"

        second = await lister.list_page("t2", 100)
        assert [s.asset_id for s in second.items] == ["dash2"]
        assert second.next_token is None
        assert client.calls[0] == ("list_dashboards", {"AwsAccountId": ACCOUNT, "MaxResults": 100})

    async def test_datasource_lister_cleans_parameter_unions(self, source):
        lister = source.lister(AssetType.DATASOURCE)
        assert isinstance(lister, LegacyDataSourceLister)
        page = await lister.list_page(None, 100)
        assert [s.asset_id for s in page.items] == ["src1", "src2"]
        assert "DataSourceParameters" not in page.items[0].raw
        assert "AlternateDataSourceParameters" not in page.items[0].raw
        assert page.items[1].raw["DataSourceParameters"] == {"PostgreSqlParameters": {"Host": "db"}}

    async def test_dashboard_detail_combines_definition(self, source):
        detail = await source.get_detail(AssetType.DASHBOARD, "dash1")
        assert detail["Dashboard"]["DashboardId"] == "dash1"
        assert detail["Definition"] == {"Sheets": []}
        assert detail["DefinitionErrors"] == [{"Type": "PARAMETER_NOT_FOUND"}]

    async def test_dataset_detail_drops_response_noise(self, source):
        detail = await source.get_detail(AssetType.DATASET, "d1")
        assert "RequestId" not in detail
        assert "Status" not in detail
        assert detail["DataSet"]["DataSetId"] == "d1"

    async def test_permissions_and_tags(self, source, client):
        permissions = await source.get_permissions(AssetType.DATASET, "d1")
        assert permissions[0]["Actions"] == ["a"]
        tags = await source.get_tags(AssetType.DATASET, "d1")
        assert tags == {"team": "bi"}
        assert client.calls[-1][1]["ResourceArn"] == build_arn(REGION, ACCOUNT, AssetType.DATASET, "d1")

    async def test_client_errors_are_classified(self, source, client):
        client.fail_with["list_dashboards"] = _client_error("ThrottlingException")
        with pytest.raises(RateLimitedError):
            await source.lister(AssetType.DASHBOARD).list_page(None, 100)


class TestSummaryFromItem:
    def test_string_timestamps(self):
        summary = summary_from_item(
            AssetType.DATASET, {"DataSetId": "d1", "Name": "x", "LastUpdatedTime": "2024-05-01T10:00:00Z"}
        )
        assert summary.last_updated == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)

    def test_bad_timestamp(self):
        summary = summary_from_item(AssetType.DATASET, {"DataSetId": "d1", "LastUpdatedTime": "yesterday"})
        assert summary.last_updated is None


class TestOfflineSource:
    @pytest.fixture
    def folder(self, tmp_path):
        datasets = tmp_path / "datasets"
        datasets.mkdir()
        for i in range(3):
            doc = {
                "detail": dataset_detail(f"d{i}", f"Set {i}"),
                "permissions": [{"Principal": "p", "Actions": []}],
                "tags": {"env": "test"},
            }
            (datasets / f"d{i}.json").write_text(json.dumps(doc))
        (datasets / "broken.json").write_text("{not json")
        return tmp_path

    async def test_unreadable_file_is_malformed(self, folder):
        source = OfflineAssetSource({"folder_path": str(folder)})
        with pytest.raises(MalformedResponseError):
            await source.lister(AssetType.DATASET).list_page(None, 2)

    async def test_summary_derived_from_detail(self, folder):
        (folder / "datasets" / "broken.json").unlink()
        source = OfflineAssetSource({"folder_path": str(folder)})
        page = await source.lister(AssetType.DATASET).list_page(None, 2)
        assert [s.asset_id for s in page.items] == ["d0", "d1"]
        assert page.items[0].name == "Set 0"
        assert page.next_token == "2"
        last = await source.lister(AssetType.DATASET).list_page("2", 2)
        assert [s.asset_id for s in last.items] == ["d2"]
        assert last.next_token is None

    async def test_detail_permissions_tags(self, folder):
        source = OfflineAssetSource({"folder_path": str(folder)})
        assert (await source.get_detail(AssetType.DATASET, "d1"))["DataSet"]["Name"] == "Set 1"
        assert await source.get_tags(AssetType.DATASET, "d1") == {"env": "test"}
        assert len(await source.get_permissions(AssetType.DATASET, "d1")) == 1

    async def test_missing_asset(self, folder):
        source = OfflineAssetSource({"folder_path": str(folder)})
        with pytest.raises(AssetNotFoundError):
            await source.get_detail(AssetType.DATASET, "nope")

    async def test_missing_type_folder_lists_nothing(self, folder):
        source = OfflineAssetSource({"folder_path": str(folder)})
        page = await source.lister(AssetType.DASHBOARD).list_page(None, 10)
        assert page.items == []
        assert page.next_token is None
        assert await source.test_connection()


class TestFactory:
    def test_offline_mode(self, tmp_path):
        source = create_asset_source(Settings(ASSET_SOURCE_MODE="offline", OFFLINE_SOURCE_PATH=str(tmp_path)))
        assert isinstance(source, OfflineAssetSource)

    def test_quicksight_mode(self):
        source = create_asset_source(Settings(ASSET_SOURCE_MODE="quicksight", AWS_ACCOUNT_ID=ACCOUNT))
        assert isinstance(source, QuickSightAssetSource)

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            create_asset_source(Settings(ASSET_SOURCE_MODE="tableau"))
