"""Tests for JSON output formatting."""

import json

from iampilot.models.policy import (
    BatchUploadResponse,
    FailedUpload,
    GeneratePoliciesResult,
    PolicyDocument,
    PolicyStatement,
    PolicyWithMetadata,
)
from iampilot.reporter.json_out import policy_output, to_json, write_output


def _result(explanations=None):
    statement = PolicyStatement(sid="AllowS3GetObject", action=["s3:GetObject"], resource=["arn:aws:s3:::reports/*"])
    return GeneratePoliciesResult(
        policies=[PolicyWithMetadata(policy=PolicyDocument(statement=[statement]))],
        explanations=explanations,
    )


class TestPolicyOutput:
    def test_iam_key_order(self):
        text = to_json(policy_output(_result()), pretty=False)
        assert text == (
            '{"Policies":[{"Policy":{"Version":"2012-10-17","Statement":[{"Sid":"AllowS3GetObject",'
            '"Effect":"Allow","Action":["s3:GetObject"],"Resource":["arn:aws:s3:::reports/*"]}]},'
            '"PolicyType":"Identity"}]}\n'
        )

    def test_pretty(self):
        text = to_json(policy_output(_result()), pretty=True)
        assert text.endswith("}\n")
        assert '\n  "Policies": [' in text

    def test_explanations_only_when_requested(self):
        assert "Explanations" not in policy_output(_result())
        assert policy_output(_result(explanations=[]))["Explanations"] == []

    def test_upload_result(self):
        upload = BatchUploadResponse(failed=[FailedUpload(policy_name="App-1", error="denied")])
        data = policy_output(_result(), upload)
        assert data["UploadResult"] == {"Successful": [], "Failed": [{"PolicyName": "App-1", "Error": "denied"}]}


def test_write_output(tmp_path):
    target = tmp_path / "nested" / "out.json"
    write_output(to_json({"a": 1}), target)
    assert json.loads(target.read_text()) == {"a": 1}
