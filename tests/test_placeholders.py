"""Tests for ARN placeholder substitution strategies."""

import pytest

from iampilot.enrichment.placeholders import (
    AccountContextStrategy,
    LiteralArgumentStrategy,
    PlaceholderRequest,
    PlaceholderResolver,
    TerraformContextStrategy,
    WildcardStrategy,
    substitute_context,
    value_from_arn,
    wildcard_placeholders,
)
from iampilot.models.context import AccountResourceContext, AwsContext, TerraformStateContext

BUCKET = "arn:${Partition}:s3:::${BucketName}"
OBJECT = "arn:${Partition}:s3:::${BucketName}/${ObjectName}"
TABLE = "arn:${Partition}:dynamodb:${Region}:${Account}:table/${TableName}"
QUEUE = "arn:${Partition}:sqs:${Region}:${Account}:${QueueName}"


def _request(name, template=BUCKET, arguments=None, service="s3", resource_type="bucket"):
    return PlaceholderRequest(name, service, resource_type, template, arguments or {})


class TestTemplateHelpers:
    def test_substitute_context_any_case(self):
        context = AwsContext(partition="aws-cn", region="cn-north-1", account="123456789012")
        assert (
            substitute_context("arn:${partition}:sqs:${REGION}:${Account}:${QueueName}", context)
            == "arn:aws-cn:sqs:cn-north-1:123456789012:${QueueName}"
        )

    def test_wildcard_placeholders(self):
        assert wildcard_placeholders(OBJECT) == "arn:*:s3:::*/*"

    def test_value_from_arn(self):
        arn = "arn:aws:dynamodb:us-east-1:123456789012:table/orders"
        assert value_from_arn(TABLE, arn, "TableName") == "orders"
        assert value_from_arn(TABLE, arn, "Region") == "us-east-1"
        assert value_from_arn(TABLE, "arn:aws:s3:::bucket", "TableName") is None

    def test_value_from_arn_empty_region(self):
        assert value_from_arn(BUCKET, "arn:aws:s3:::reports", "BucketName") == "reports"


class TestLiteralArgumentStrategy:
    def test_direct_and_alias_names(self):
        strategy = LiteralArgumentStrategy({"objectname": ["key"]})
        assert strategy.resolve(_request("BucketName", arguments={"Bucket": "reports"})).value == "reports"
        resolution = strategy.resolve(_request("ObjectName", OBJECT, {"Key": "2024/summary.csv"}))
        assert resolution.value == "2024/summary.csv"
        assert "argument Key" in resolution.reason

    def test_snake_case_arguments(self):
        strategy = LiteralArgumentStrategy()
        resolution = strategy.resolve(_request("TableName", TABLE, {"table_name": "orders"}))
        assert resolution.value == "orders"

    def test_queue_url_last_segment(self):
        strategy = LiteralArgumentStrategy({"queuename": ["queueurl"]})
        url = "https://sqs.us-east-1.amazonaws.com/123456789012/jobs"
        assert strategy.resolve(_request("QueueName", QUEUE, {"QueueUrl": url}, "sqs", "queue")).value == "jobs"

    def test_arn_argument(self):
        strategy = LiteralArgumentStrategy()
        arn = "arn:aws:dynamodb:us-east-1:123456789012:table/orders"
        assert strategy.resolve(_request("TableName", TABLE, {"TableName": arn})).value == "orders"

    @pytest.mark.parametrize("value", ["${env.BUCKET}", ""])
    def test_unusable_values(self, value):
        assert LiteralArgumentStrategy().resolve(_request("BucketName", arguments={"Bucket": value})) is None

    def test_no_matching_argument(self):
        assert LiteralArgumentStrategy().resolve(_request("BucketName", arguments={"Prefix": "x"})) is None


class TestContextStrategies:
    def test_single_account_arn(self):
        context = AccountResourceContext.model_validate(
            {"ResourceMap": {"s3:bucket": [{"Arn": "arn:aws:s3:::only-bucket"}]}}
        )
        resolution = AccountContextStrategy(context).resolve(_request("BucketName"))
        assert resolution.value == "only-bucket"
        assert "account resources" in resolution.reason

    def test_ambiguous_account_arns(self):
        context = AccountResourceContext.model_validate(
            {"ResourceMap": {"s3:bucket": [{"Arn": "arn:aws:s3:::a"}, {"Arn": "arn:aws:s3:::b"}]}}
        )
        assert AccountContextStrategy(context).resolve(_request("BucketName")) is None

    def test_terraform_state(self):
        context = TerraformStateContext(
            resource_arns={"dynamodb:table": ["arn:aws:dynamodb:us-east-1:123456789012:table/orders"]}
        )
        strategy = TerraformContextStrategy(context)
        resolution = strategy.resolve(_request("TableName", TABLE, service="dynamodb", resource_type="table"))
        assert resolution.value == "orders"

    def test_missing_context(self):
        assert AccountContextStrategy(None).resolve(_request("BucketName")) is None
        assert TerraformContextStrategy(None).resolve(_request("BucketName")) is None


class TestResolver:
    def test_literal_wins_over_context(self):
        terraform = TerraformStateContext(resource_arns={"s3:bucket": ["arn:aws:s3:::from-state"]})
        resolver = PlaceholderResolver.default(terraform_context=terraform)
        arn, reasons = resolver.expand(BUCKET, "s3", "bucket", {"Bucket": "literal"})
        assert arn == "arn:${Partition}:s3:::literal"
        assert len(reasons) == 1

    def test_wildcard_fallback(self):
        resolver = PlaceholderResolver.default(aliases={"objectname": ["key"]})
        arn, reasons = resolver.expand(OBJECT, "s3", "object", {"Bucket": "reports"})
        assert arn == "arn:${Partition}:s3:::reports/*"
        assert any("wildcard" in r for r in reasons)

    def test_aws_context_applied(self):
        resolver = PlaceholderResolver.default(aws_context=AwsContext(region="eu-west-1", account="123456789012"))
        arn, _ = resolver.expand(TABLE, "dynamodb", "table", {"TableName": "orders"})
        assert arn == "arn:aws:dynamodb:eu-west-1:123456789012:table/orders"

    def test_unresolved_left_in_place(self):
        resolver = PlaceholderResolver([LiteralArgumentStrategy()])
        arn, reasons = resolver.expand(BUCKET, "s3", "bucket", {})
        assert arn == BUCKET
        assert reasons == []

    def test_repeated_placeholder_resolved_once(self):
        resolver = PlaceholderResolver([WildcardStrategy()])
        arn, reasons = resolver.expand("arn:${Partition}:x:::${Name}/${Name}", "x", "y", {})
        assert arn == "arn:${Partition}:x:::*/*"
        assert len(reasons) == 1
