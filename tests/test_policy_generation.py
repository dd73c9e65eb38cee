"""Tests for turning enriched calls into policy documents."""

import pytest

from iampilot.errors import PolicyGenerationError
from iampilot.models.calls import Location, SdkMethodCall
from iampilot.models.context import AwsContext
from iampilot.models.enrichment import Action, EnrichedSdkMethodCall, Explanation, Resource
from iampilot.policy.generation import PolicyGenerationEngine

OBJECT = "arn:${Partition}:s3:::${BucketName}/${ObjectName}"


def _enriched(method, service, *actions, location=None):
    return EnrichedSdkMethodCall(
        method_name=method,
        service=service,
        actions=list(actions),
        source_call=SdkMethodCall(name=method, possible_services=[service], location=location),
    )


def _action(name, *templates, resource_type="object", reasons=()):
    resources = [Resource(resource_type_name=resource_type, arn_templates=list(templates))] if templates else []
    return Action(name=name, resources=resources, explanation=Explanation(reasons=list(reasons)))


class TestGeneratePolicies:
    def test_wildcarded_object(self):
        engine = PolicyGenerationEngine()
        result = engine.generate_policies([_enriched("get_object", "s3", _action("s3:GetObject", OBJECT))])
        [policy] = result.policies
        assert policy.to_dict() == {
            "Policy": {
                "Version": "2012-10-17",
                "Statement": [
                    {
                        "Sid": "AllowS3GetObject",
                        "Effect": "Allow",
                        "Action": ["s3:GetObject"],
                        "Resource": ["arn:aws:s3:::*/*"],
                    }
                ],
            },
            "PolicyType": "Identity",
        }

    def test_aws_context_any_case(self):
        engine = PolicyGenerationEngine(AwsContext(partition="aws-cn", region="cn-north-1", account="123456789012"))
        template = "arn:${partition}:sqs:${REGION}:${Account}:jobs"
        assert engine.expand_template(template) == "arn:aws-cn:sqs:cn-north-1:123456789012:jobs"

    def test_default_context_wildcards_region_and_account(self):
        engine = PolicyGenerationEngine()
        template = "arn:${Partition}:dynamodb:${Region}:${Account}:table/orders"
        assert engine.expand_template(template) == "arn:aws:dynamodb:*:*:table/orders"

    def test_no_specific_resource(self):
        engine = PolicyGenerationEngine()
        star = Action(name="s3:ListAllMyBuckets", resources=[Resource(resource_type_name="*")])
        unknown = Action(name="dynamodb:Query", resources=[Resource(resource_type_name="index", arn_templates=None)])
        assert engine.action_resources(star) == ["*"]
        assert engine.action_resources(unknown) == ["*"]

    def test_any_wildcard_collapses_resources(self):
        engine = PolicyGenerationEngine()
        action = Action(
            name="kms:Decrypt",
            resources=[
                Resource(resource_type_name="key", arn_templates=["arn:aws:kms:us-east-1:123456789012:key/abc"]),
                Resource(resource_type_name="*"),
                Resource(resource_type_name="alias", arn_templates=["*"]),
            ],
        )
        assert engine.action_resources(action) == ["*"]

    def test_one_statement_per_action(self):
        engine = PolicyGenerationEngine()
        call = _enriched(
            "send_message",
            "sqs",
            _action("sqs:SendMessage", "arn:aws:sqs:us-east-1:123456789012:jobs", resource_type="queue"),
            _action("kms:GenerateDataKey", "arn:aws:kms:us-east-1:123456789012:key/${KeyId}", resource_type="key"),
        )
        [policy] = engine.generate_policies([call]).policies
        statements = policy.policy.statement
        assert [s.action for s in statements] == [["sqs:SendMessage"], ["kms:GenerateDataKey"]]
        assert statements[1].resource == ["arn:aws:kms:us-east-1:123456789012:key/*"]

    def test_duplicate_pairs_emitted_once(self):
        engine = PolicyGenerationEngine()
        first = _enriched("get_object", "s3", _action("s3:GetObject", "arn:aws:s3:::reports/a"))
        second = _enriched("get_object", "s3", _action("s3:GetObject", "arn:aws:s3:::reports/a"))
        other = _enriched("get_object", "s3", _action("s3:GetObject", "arn:aws:s3:::reports/b"))
        result = engine.generate_policies([first, second, other])
        assert len(result.policies) == 2
        pairs = [(s.action[0], tuple(s.resource)) for p in result.policies for s in p.policy.statement]
        assert len(pairs) == len(set(pairs)) == 2
        assert len(result.explanations) == 3

    def test_deterministic(self):
        engine = PolicyGenerationEngine()
        calls = [
            _enriched("get_object", "s3", _action("s3:GetObject", OBJECT)),
            _enriched("put_item", "dynamodb", _action("dynamodb:PutItem", resource_type="table")),
        ]
        assert engine.generate_policies(calls) == engine.generate_policies(calls)

    def test_empty_input(self):
        result = PolicyGenerationEngine().generate_policies([])
        assert result.policies == []
        assert result.explanations == []

    def test_empty_placeholder(self):
        engine = PolicyGenerationEngine()
        with pytest.raises(PolicyGenerationError) as excinfo:
            engine.generate_policies([_enriched("get_object", "s3", _action("s3:GetObject", "arn:aws:s3:::${}"))])
        assert excinfo.value.template == "arn:aws:s3:::${}"

    def test_explanations(self):
        engine = PolicyGenerationEngine()
        location = Location(file="app.py", start_line=8, start_col=4, end_line=8, end_col=40)
        call = _enriched(
            "get_object", "s3", _action("s3:GetObject", OBJECT, reasons=["${BucketName} from argument Bucket"]), location=location
        )
        [explanation] = engine.generate_policies([call]).explanations
        assert explanation.location == "app.py:8:4"
        assert explanation.actions[0].reasons == ["${BucketName} from argument Bucket"]


class TestMergePolicies:
    def test_merges_generated_policies(self):
        engine = PolicyGenerationEngine()
        calls = [
            _enriched("get_object", "s3", _action("s3:GetObject", "arn:aws:s3:::reports/*")),
            _enriched("put_object", "s3", _action("s3:PutObject", "arn:aws:s3:::reports/*")),
        ]
        result = engine.generate_policies(calls)
        [merged] = engine.merge_policies(result.policies)
        [statement] = merged.policy.statement
        assert statement.action == ["s3:GetObject", "s3:PutObject"]
        assert statement.sid == "AllowS3GetObject"

    def test_merge_nothing(self):
        assert PolicyGenerationEngine().merge_policies([]) == []
