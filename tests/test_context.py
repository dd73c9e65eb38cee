"""Tests for the Terraform state and account resource contexts."""

import asyncio
import json
import subprocess
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from iampilot.context import terraform
from iampilot.context.account import PAGE_SIZE, build_resource_context, fetch_account_context
from iampilot.context.terraform import fetch_terraform_state, parse_terraform_state, run_terraform_show
from iampilot.errors import AccountResourceContextError, TerraformStateCommandError, TerraformStateParseError
from iampilot.models.context import Arn

STATE = {
    "format_version": "1.0",
    "values": {
        "root_module": {
            "resources": [
                {"address": "aws_s3_bucket.reports", "values": {"arn": "arn:aws:s3:::reports"}},
                {"address": "aws_dynamodb_table.orders", "values": {"arn": "arn:aws:dynamodb:us-east-1:123456789012:table/orders"}},
                {"address": "aws_sqs_queue.jobs", "values": {"arn": "arn:aws:sqs:us-east-1:123456789012:jobs"}},
                {"address": "random_id.suffix", "values": {"hex": "ab12"}},
                {"address": "aws_thing.bad", "values": {"arn": "not-an-arn"}},
            ],
            "child_modules": [
                {
                    "address": "module.worker",
                    "resources": [
                        {"address": "module.worker.aws_lambda_function.fn", "values": {"arn": "arn:aws:lambda:us-east-1:123456789012:function:worker"}}
                    ],
                }
            ],
        }
    },
}


class TestArn:
    @pytest.mark.parametrize(
        "arn,key",
        [
            ("arn:aws:s3:::reports", "s3:bucket"),
            ("arn:aws:s3:::reports/a.csv", "s3:object"),
            ("arn:aws:sqs:us-east-1:123456789012:jobs", "sqs:queue"),
            ("arn:aws:dynamodb:us-east-1:123456789012:table/orders", "dynamodb:table"),
            ("arn:aws:lambda:us-east-1:123456789012:function:worker", "lambda:function"),
        ],
    )
    def test_keys(self, arn, key):
        assert Arn.parse(arn).key == key

    def test_malformed(self):
        assert Arn.parse("not-an-arn") is None


class TestParseTerraformState:
    def test_walks_modules(self):
        context = parse_terraform_state(json.dumps(STATE))
        assert context.arns_for("s3:bucket") == ["arn:aws:s3:::reports"]
        assert context.arns_for("dynamodb:table") == ["arn:aws:dynamodb:us-east-1:123456789012:table/orders"]
        assert context.arns_for("sqs:queue") == ["arn:aws:sqs:us-east-1:123456789012:jobs"]
        assert context.arns_for("lambda:function") == ["arn:aws:lambda:us-east-1:123456789012:function:worker"]
        assert context.arns_for("ec2:instance") == []

    @pytest.mark.parametrize(
        "output,message",
        [
            ("[]", "is not a map"),
            ("{}", "does not have values field"),
            ('{"values": {}}', "values.root_module field"),
            ('{"values": {"root_module": {}}}', "values.root_module.resources field"),
            ("not json", "not JSON"),
        ],
    )
    def test_malformed(self, output, message):
        with pytest.raises(TerraformStateParseError) as excinfo:
            parse_terraform_state(output)
        assert message in excinfo.value.message


class TestRunTerraformShow:
    def test_success(self, monkeypatch, tmp_path):
        run = MagicMock(return_value=subprocess.CompletedProcess(["terraform"], 0, json.dumps(STATE), ""))
        monkeypatch.setattr(terraform.shutil, "which", lambda name: "/usr/bin/terraform")
        monkeypatch.setattr(terraform.subprocess, "run", run)
        context = fetch_terraform_state(tmp_path, timeout=5)
        assert context.arns_for("s3:bucket") == ["arn:aws:s3:::reports"]
        assert run.call_args.args[0] == ["terraform", "show", "-json"]
        assert run.call_args.kwargs["cwd"] == str(tmp_path)
        assert run.call_args.kwargs["timeout"] == 5

    def test_missing_executable(self, monkeypatch, tmp_path):
        monkeypatch.setattr(terraform.shutil, "which", lambda name: None)
        with pytest.raises(TerraformStateCommandError) as excinfo:
            run_terraform_show(tmp_path)
        assert "not found" in excinfo.value.stderr

    def test_non_zero_exit(self, monkeypatch, tmp_path):
        monkeypatch.setattr(terraform.shutil, "which", lambda name: "/usr/bin/terraform")
        monkeypatch.setattr(
            terraform.subprocess,
            "run",
            MagicMock(return_value=subprocess.CompletedProcess(["terraform"], 1, "", "Error: No state file\n")),
        )
        with pytest.raises(TerraformStateCommandError) as excinfo:
            run_terraform_show(tmp_path)
        assert excinfo.value.context["stderr"] == "Error: No state file"

    def test_timeout(self, monkeypatch, tmp_path):
        monkeypatch.setattr(terraform.shutil, "which", lambda name: "/usr/bin/terraform")
        monkeypatch.setattr(
            terraform.subprocess,
            "run",
            MagicMock(side_effect=subprocess.TimeoutExpired(["terraform"], 1)),
        )
        with pytest.raises(TerraformStateCommandError, match="Terraform command failed"):
            run_terraform_show(tmp_path, timeout=1)


class _Session:
    def __init__(self, **clients):
        self.clients = clients

    def client(self, service_name, **kwargs):
        @asynccontextmanager
        async def _client():
            yield self.clients[service_name]

        return _client()


class TestAccountContext:
    def test_build_resource_context(self):
        context = build_resource_context(
            [
                {"ResourceType": "s3:bucket", "Arn": "arn:aws:s3:::a"},
                {"ResourceType": "s3:bucket", "Arn": "arn:aws:s3:::b"},
                {"ResourceType": "s3:bucket"},
            ]
        )
        assert context.arns_for("s3:bucket") == ["arn:aws:s3:::a", "arn:aws:s3:::b"]
        assert context.model_dump(by_alias=True) == {
            "ResourceMap": {"s3:bucket": [{"Arn": "arn:aws:s3:::a"}, {"Arn": "arn:aws:s3:::b"}]}
        }

    def test_pages_through_resources(self):
        sts = AsyncMock()
        sts.get_caller_identity.return_value = {"Account": "123456789012"}
        explorer = AsyncMock()
        explorer.list_resources.side_effect = [
            {"Resources": [{"ResourceType": "s3:bucket", "Arn": "arn:aws:s3:::a"}], "NextToken": "t1"},
            {"Resources": [{"ResourceType": "sqs:queue", "Arn": "arn:aws:sqs:us-east-1:123456789012:jobs"}]},
        ]
        session = _Session(sts=sts, **{"resource-explorer-2": explorer})

        context = asyncio.run(fetch_account_context(session))

        assert context.arns_for("sqs:queue") == ["arn:aws:sqs:us-east-1:123456789012:jobs"]
        first, second = explorer.list_resources.await_args_list
        assert first.kwargs == {"MaxResults": PAGE_SIZE}
        assert second.kwargs == {"MaxResults": PAGE_SIZE, "NextToken": "t1"}

    def test_explorer_failure(self):
        sts = AsyncMock()
        sts.get_caller_identity.return_value = {"Account": "123456789012"}
        explorer = AsyncMock()
        explorer.list_resources.side_effect = ClientError(
            {"Error": {"Code": "UnauthorizedException", "Message": "no index"}}, "ListResources"
        )
        session = _Session(sts=sts, **{"resource-explorer-2": explorer})
        with pytest.raises(AccountResourceContextError, match="resource explorer"):
            asyncio.run(fetch_account_context(session))
