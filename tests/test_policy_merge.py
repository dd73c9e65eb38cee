"""Tests for statement merging, Sid assignment and size packing."""

import itertools

from iampilot.models.policy import PolicyDocument, PolicyStatement
from iampilot.policy.merge import (
    PolicyMerger,
    PolicyMergerConfig,
    assign_sids,
    policy_size,
    statement_sid,
)


def _statement(action, *resources, condition=None):
    return PolicyStatement(action=[action], resource=list(resources) or ["*"], condition=condition)


class TestSids:
    def test_statement_sid(self):
        assert statement_sid("s3:GetObject") == "AllowS3GetObject"
        assert statement_sid("access-analyzer:ListAnalyzers") == "AllowAccessAnalyzerListAnalyzers"

    def test_collisions_get_suffixes(self):
        statements = [
            _statement("s3:GetObject", "arn:aws:s3:::a/*"),
            _statement("s3:GetObject", "arn:aws:s3:::b/*"),
            _statement("s3:GetObject", "arn:aws:s3:::c/*"),
        ]
        assert [s.sid for s in assign_sids(statements)] == ["AllowS3GetObject", "AllowS3GetObject1", "AllowS3GetObject2"]


class TestMergeStatements:
    def test_same_resources_merge(self):
        merger = PolicyMerger()
        merged = merger.merge_statements(
            [
                _statement("s3:PutObject", "arn:aws:s3:::reports/*"),
                _statement("s3:GetObject", "arn:aws:s3:::reports/*"),
                _statement("s3:ListBucket", "arn:aws:s3:::reports"),
            ]
        )
        assert [(s.action, s.resource) for s in merged] == [
            (["s3:GetObject", "s3:PutObject"], ["arn:aws:s3:::reports/*"]),
            (["s3:ListBucket"], ["arn:aws:s3:::reports"]),
        ]

    def test_services_kept_apart_by_default(self):
        statements = [_statement("s3:ListAllMyBuckets"), _statement("sqs:ListQueues")]
        assert len(PolicyMerger().merge_statements(statements)) == 2
        cross = PolicyMerger(PolicyMergerConfig(allow_cross_service_merging=True))
        [merged] = cross.merge_statements(statements)
        assert merged.action == ["s3:ListAllMyBuckets", "sqs:ListQueues"]

    def test_conditions_kept_apart(self):
        conditioned = _statement("s3:GetObject", "arn:aws:s3:::a/*", condition={"Bool": {"aws:SecureTransport": "true"}})
        plain = _statement("s3:PutObject", "arn:aws:s3:::a/*")
        merged = PolicyMerger().merge_statements([conditioned, plain])
        assert len(merged) == 2
        assert merged[0].condition == {"Bool": {"aws:SecureTransport": "true"}}

    def test_order_independent(self):
        statements = [
            _statement("s3:GetObject", "arn:aws:s3:::a/*"),
            _statement("s3:PutObject", "arn:aws:s3:::a/*"),
            _statement("dynamodb:GetItem", "arn:aws:dynamodb:*:*:table/orders"),
            _statement("s3:ListBucket", "arn:aws:s3:::a"),
        ]
        merger = PolicyMerger()
        expected = merger.merge([PolicyDocument(statement=statements)])
        for permutation in itertools.permutations(statements):
            assert merger.merge([PolicyDocument(statement=list(permutation))]) == expected


class TestPack:
    def test_empty(self):
        assert PolicyMerger().merge([]) == []
        assert PolicyMerger().merge([PolicyDocument()]) == []

    def test_splits_at_size_limit(self):
        statements = [_statement(f"s3:Action{i:03d}", f"arn:aws:s3:::bucket-{i:03d}/*") for i in range(200)]
        merger = PolicyMerger(PolicyMergerConfig(max_policy_size=2000))
        documents = merger.merge([PolicyDocument(statement=statements)])
        assert len(documents) > 1
        assert all(policy_size(d) <= 2000 for d in documents)
        assert sum(len(d.statement) for d in documents) == 200
        for document in documents:
            sids = [s.sid for s in document.statement]
            assert len(sids) == len(set(sids))

    def test_oversized_statement_kept(self):
        statement = _statement("s3:GetObject", *[f"arn:aws:s3:::bucket-{i}/*" for i in range(50)])
        [document] = PolicyMerger(PolicyMergerConfig(max_policy_size=100)).merge([PolicyDocument(statement=[statement])])
        assert document.statement[0].action == ["s3:GetObject"]

    def test_size_ignores_whitespace(self):
        document = PolicyDocument(statement=[_statement("s3:GetObject", "arn:aws:s3:::a b")])
        assert " " not in "".join(document.to_dict()["Statement"][0]["Action"])
        assert policy_size(document) == len(
            '{"Version":"2012-10-17","Statement":[{"Effect":"Allow","Action":["s3:GetObject"],"Resource":["arn:aws:s3:::ab"]}]}'
        )
