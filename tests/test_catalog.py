"""Tests for the service catalog, service reference loaders and rename tables."""

import json
from pathlib import Path

import httpx
import pytest

from iampilot.catalog.service_catalog import DirectoryCatalogSource, ServiceCatalog
from iampilot.catalog.service_configuration import (
    ServiceConfiguration,
    get_service_configuration,
    load_service_configuration_file,
)
from iampilot.catalog.service_reference import (
    LocalServiceReferenceLoader,
    RemoteServiceReferenceLoader,
    ServiceReference,
)
from iampilot.errors import (
    ConfigurationError,
    EnrichmentError,
    OperationActionMapParseError,
    ServiceReferenceNotFoundError,
    ServiceReferenceParseError,
)
from iampilot.models.calls import SdkType

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def catalog():
    return ServiceCatalog(DirectoryCatalogSource(FIXTURES / "catalog"))


class TestServiceCatalog:
    def test_service_names(self, catalog):
        assert catalog.service_names() == ["dynamodb", "s3", "sqs"]

    def test_latest_version_wins(self, catalog):
        model = catalog.get("s3")
        assert model.api_version == "2006-03-01"
        assert "LegacyOnly" not in model.operations

    def test_only_simplified_fields_kept(self, catalog):
        model = catalog.get("s3")
        assert model.service_id == "S3"
        assert "documentation" not in model.shapes["GetObjectRequest"]
        assert model.shapes["GetObjectRequest"]["members"].keys() == {"Bucket", "Key"}

    def test_unknown_service(self, catalog):
        assert catalog.get("ec2") is None
        assert catalog.resolve_operation("ec2", "describe_instances", SdkType.BOTO3) is None

    @pytest.mark.parametrize(
        "method,sdk_type",
        [
            ("list_objects_v2", SdkType.BOTO3),
            ("listObjectsV2", SdkType.JAVASCRIPT),
            ("ListObjectsV2", SdkType.JAVASCRIPT),
            ("ListObjectsV2", SdkType.GO),
            ("ListObjectsV2Pages", SdkType.GO),
        ],
    )
    def test_resolve_operation(self, catalog, method, sdk_type):
        assert catalog.resolve_operation("s3", method, sdk_type) == "ListObjectsV2"

    def test_services_for_operation(self, catalog):
        assert catalog.services_for_operation("get_item", SdkType.BOTO3) == ["dynamodb"]
        assert catalog.services_for_operation("sendMessage", SdkType.JAVASCRIPT) == ["sqs"]
        assert catalog.services_for_operation("nothing_here", SdkType.BOTO3) == []

    def test_malformed_model(self, tmp_path: Path):
        version_dir = tmp_path / "broken" / "2020-01-01"
        version_dir.mkdir(parents=True)
        (version_dir / "service-2.json").write_text("{not json")
        with pytest.raises(ServiceReferenceParseError):
            ServiceCatalog(DirectoryCatalogSource(tmp_path)).get("broken")


class TestServiceReference:
    def test_local_loader(self):
        loader = LocalServiceReferenceLoader(FIXTURES / "service-reference")
        s3 = loader.load("s3")
        assert [a.full_name for a in s3.authorized_actions("ListObjects")] == ["s3:ListBucket"]
        assert s3.resources["object"] == ["arn:${Partition}:s3:::${BucketName}/${ObjectName}"]
        assert s3.actions["GetObject"].condition_keys == ["s3:ExistingObjectTag/<key>"]
        assert s3.operation_for_sdk_method("get_object", "Boto3") == "GetObject"
        assert loader.load("s3") is s3

    def test_missing_operation(self):
        s3 = LocalServiceReferenceLoader(FIXTURES / "service-reference").load("s3")
        assert s3.authorized_actions("DeleteObject") is None

    def test_not_found(self):
        with pytest.raises(ServiceReferenceNotFoundError):
            LocalServiceReferenceLoader(FIXTURES / "service-reference").load("ec2")

    def test_malformed_documents(self):
        with pytest.raises(ServiceReferenceParseError):
            ServiceReference.from_document("x", [])
        with pytest.raises(ServiceReferenceParseError):
            ServiceReference.from_document("x", {"Actions": [{"Resources": []}]})
        with pytest.raises(OperationActionMapParseError):
            ServiceReference.from_document("x", {"Operations": [{"Name": "Op", "AuthorizedActions": [{"Name": "A"}]}]})


def _transport(calls: list[str]):
    index = [{"service": "s3", "url": "https://ref.example/s3.json"}]
    document = json.loads((FIXTURES / "service-reference" / "s3.json").read_text())

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if str(request.url) == "https://ref.example/":
            return httpx.Response(200, json=index)
        if str(request.url) == "https://ref.example/s3.json":
            return httpx.Response(200, json=document)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


class TestRemoteLoader:
    def test_fetch_and_cache(self, tmp_path: Path):
        calls: list[str] = []
        client = httpx.Client(transport=_transport(calls))
        loader = RemoteServiceReferenceLoader("https://ref.example/", cache_dir=tmp_path, client=client)
        assert loader.service_names() == ["s3"]
        assert "GetObject" in loader.load("s3").actions
        assert (tmp_path / "service-reference" / "s3.json").is_file()

        # A fresh loader reads the disk cache without touching the network
        calls.clear()
        again = RemoteServiceReferenceLoader("https://ref.example/", cache_dir=tmp_path, client=client)
        assert "GetObject" in again.load("s3").actions
        assert calls == []

    def test_cache_disabled(self, tmp_path: Path):
        calls: list[str] = []
        client = httpx.Client(transport=_transport(calls))
        loader = RemoteServiceReferenceLoader(
            "https://ref.example/", cache_dir=tmp_path, disable_cache=True, client=client
        )
        loader.load("s3")
        assert not (tmp_path / "service-reference").exists()

    def test_unknown_service(self, tmp_path: Path):
        client = httpx.Client(transport=_transport([]))
        loader = RemoteServiceReferenceLoader("https://ref.example/", client=client)
        with pytest.raises(ServiceReferenceNotFoundError):
            loader.load("ec2")

    def test_http_failure(self):
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
        loader = RemoteServiceReferenceLoader("https://ref.example/", client=client)
        with pytest.raises(EnrichmentError):
            loader.load("s3")


class TestServiceConfiguration:
    def test_bundled_tables(self):
        config = get_service_configuration()
        assert config is get_service_configuration()
        assert config.botocore_service_name("sfn") == "stepfunctions"
        assert config.botocore_service_name("S3") == "s3"
        assert config.rename_service_operation_action_map("stepfunctions") == "states"
        assert config.rename_service_service_reference("s3") == "s3"
        renamed = config.rename_operation("s3", "HeadObject")
        assert (renamed.service, renamed.operation) == ("s3", "GetObject")
        unchanged = config.rename_operation("s3", "GetObject")
        assert unchanged.operation == "GetObject"
        assert config.resource_override("sqs", "queue").endswith(":${QueueName}")
        assert config.resource_override("s3", "bucket") is None
        assert config.placeholder_aliases["objectname"] == ["key"]

    def test_load_custom_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("RenameOperations:\n  'lambda:Invoke':\n    service: lambda\n    operation: InvokeFunction\n")
        config = load_service_configuration_file(path)
        assert isinstance(config, ServiceConfiguration)
        assert config.rename_operation("lambda", "Invoke").operation == "InvokeFunction"

    def test_malformed_file(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("RenameOperations: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_service_configuration_file(path)
