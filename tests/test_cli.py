"""Tests for the Typer CLI."""

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from iampilot import __version__, cli
from iampilot.cli import app
from iampilot.models.policy import (
    BatchUploadResponse,
    GeneratePoliciesResult,
    PolicyDocument,
    PolicyStatement,
    PolicyWithMetadata,
    UploadedPolicy,
)

runner = CliRunner()
FIXTURES = Path(__file__).parent / "fixtures"
APP = FIXTURES / "sources" / "python" / "app.py"

DENIAL = (
    "User: arn:aws:iam::123456789012:user/dev is not authorized to perform: "
    "s3:ListBucket on resource: arn:aws:s3:::reports/2024/a.csv because no identity-based policy allows "
    "the s3:ListBucket action"
)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "catalog_dir": str(FIXTURES / "catalog"),
                "service_reference_dir": str(FIXTURES / "service-reference"),
                "cache_dir": str(tmp_path / "cache"),
                "region": "us-east-1",
                "account": "123456789012",
            }
        )
    )
    return path


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestGeneratePolicies:
    def test_fixture_source(self, config_file):
        result = runner.invoke(app, ["generate-policies", str(APP), "--config", str(config_file), "-q"])
        assert result.exit_code == 0, result.output
        output = json.loads(result.stdout)
        [policy] = output["Policies"]
        statements = policy["Policy"]["Statement"]
        resources = {r for s in statements for r in s["Resource"]}
        assert "arn:aws:dynamodb:us-east-1:123456789012:table/orders" in resources
        assert all(s["Sid"].startswith("Allow") for s in statements)
        assert "Explanations" not in output

    def test_individual_with_explanations(self, config_file):
        result = runner.invoke(
            app,
            ["generate-policies", str(APP), "--config", str(config_file), "--individual-policies", "--explain", "--pretty", "-q"],
        )
        assert result.exit_code == 0, result.output
        output = json.loads(result.stdout)
        assert len(output["Policies"]) == 4
        assert len(output["Explanations"]) == 4
        assert "\n  " in result.stdout

    def test_region_flag_overrides_config(self, config_file):
        result = runner.invoke(
            app, ["generate-policies", str(APP), "--config", str(config_file), "--region", "eu-west-1", "-q"]
        )
        assert "arn:aws:dynamodb:eu-west-1:123456789012:table/orders" in result.stdout

    def test_output_file(self, config_file, tmp_path: Path):
        target = tmp_path / "out" / "policies.json"
        result = runner.invoke(
            app, ["generate-policies", str(APP), "--config", str(config_file), "-o", str(target), "-q"]
        )
        assert result.exit_code == 0, result.output
        assert "Policies" not in result.stdout
        assert json.loads(target.read_text())["Policies"]

    def test_unknown_extension_fails(self, config_file, tmp_path: Path):
        source = tmp_path / "app.rb"
        source.write_text("puts 1\n")
        result = runner.invoke(app, ["generate-policies", str(source), "--config", str(config_file), "-q"])
        assert result.exit_code == 1

    def test_upload(self, config_file, monkeypatch):
        policy = PolicyWithMetadata(
            policy=PolicyDocument(statement=[PolicyStatement(sid="AllowS3GetObject", action=["s3:GetObject"], resource=["*"])])
        )
        uploaded = {}

        async def fake_generate(config):
            return GeneratePoliciesResult(policies=[policy])

        async def fake_upload(policies, prefix):
            uploaded["prefix"] = prefix
            return BatchUploadResponse(
                successful=[UploadedPolicy(policy_name=f"{prefix}-1", policy_arn=f"arn:aws:iam::123456789012:policy/{prefix}-1")]
            )

        monkeypatch.setattr(cli, "generate_policies", fake_generate)
        monkeypatch.setattr(cli, "upload_policies", fake_upload)
        result = runner.invoke(
            app,
            ["generate-policies", str(APP), "--config", str(config_file), "--upload-policies", "--policy-prefix", "App", "-q"],
        )
        assert result.exit_code == 0, result.output
        assert uploaded["prefix"] == "App"
        assert json.loads(result.stdout)["UploadResult"]["Successful"][0]["PolicyName"] == "App-1"


class TestExtractSdkCalls:
    def test_extract(self, config_file):
        result = runner.invoke(app, ["extract-sdk-calls", str(APP), "--config", str(config_file), "-q"])
        assert result.exit_code == 0, result.output
        output = json.loads(result.stdout)
        names = [m["name"] for m in output["methods"]]
        assert names == ["get_object", "put_object", "get_item", "list_objects_v2"]


class TestFixAccessDenied:
    def test_plan_only(self):
        result = runner.invoke(app, ["fix-access-denied", DENIAL])
        assert result.exit_code == 0
        assert "ImplicitIdentity" in result.output
        assert "arn:aws:s3:::reports" in result.output

    def test_stdin(self):
        result = runner.invoke(app, ["fix-access-denied", "-"], input=DENIAL)
        assert result.exit_code == 0
        assert "s3:ListBucket" in result.output

    def test_unparseable(self):
        result = runner.invoke(app, ["fix-access-denied", "it broke"])
        assert result.exit_code == 1

    def test_apply_not_eligible(self):
        message = DENIAL.replace("no identity-based policy allows", "with an explicit deny in an identity-based policy for")
        result = runner.invoke(app, ["fix-access-denied", message, "--apply", "--yes"])
        assert result.exit_code == 1

    def test_apply_declined(self, monkeypatch):
        applied = []

        async def fake_apply(self, plan, options=None):
            applied.append(plan)

        monkeypatch.setattr(cli.DenialService, "apply", fake_apply)
        result = runner.invoke(app, ["fix-access-denied", DENIAL, "--apply"], input="n\n")
        assert result.exit_code == 0
        assert applied == []


class TestConfigure:
    def test_writes_config(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("partition: aws\n")
        result = runner.invoke(app, ["configure", "--region", "eu-west-1", "--catalog-dir", "/data/catalog", "--config", str(path)])
        assert result.exit_code == 0
        assert yaml.safe_load(path.read_text()) == {
            "partition": "aws",
            "region": "eu-west-1",
            "catalog_dir": "/data/catalog",
        }
