# iampilot: least-privilege IAM policy generation
# Copyright (C) 2026 iampilot contributors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""iampilot CLI: Typer entry point.

Commands:
- iampilot generate-policies <files>   SDK calls in source code -> IAM policies (JSON on stdout)
- iampilot extract-sdk-calls <files>   SDK calls found in source code (JSON on stdout)
- iampilot fix-access-denied <message> Diagnose an AccessDenied error, optionally apply the fix
- iampilot configure                   Write defaults to ~/.iampilot/config.yaml
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from iampilot import __version__
from iampilot.api import GeneratePolicyConfig, catalog_for, extract_sdk_calls, generate_policies
from iampilot.aws import DEFAULT_POLICY_PREFIX, upload_policies
from iampilot.denial.service import DenialService
from iampilot.errors import IamPilotError
from iampilot.models.context import AwsContext
from iampilot.models.denial import ApplyOptions
from iampilot.reporter.console_out import (
    console,
    print_apply_result,
    print_error,
    print_generation_summary,
    print_plan,
    print_upload_result,
)
from iampilot.reporter.json_out import extraction_output, policy_output, to_json, write_output
from iampilot.settings import CONFIG_FILE, load_config, load_settings, save_config

app = typer.Typer(
    name="iampilot",
    help="iampilot: least-privilege IAM policies from application source code and AccessDenied errors.",
    add_completion=False,
)

logger = logging.getLogger("iampilot")


def _configure_logging(verbose: bool, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")

    for name in ("httpcore", "httpx", "botocore", "aiobotocore", "aioboto3", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _split_hints(hints: Optional[list[str]]) -> Optional[list[str]]:
    if not hints:
        return None
    return [h.strip() for value in hints for h in value.split(",") if h.strip()]


@app.command(name="generate-policies")
def generate_policies_command(
    source_files: list[Path] = typer.Argument(..., help="Source files or directories to analyze"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="python, javascript, typescript or go (default: from file extensions)"),
    service_hints: Optional[list[str]] = typer.Option(None, "--service-hints", "-s", help="Restrict services considered (comma-separated or repeated)"),
    region: Optional[str] = typer.Option(None, "--region", help="Region substituted into ARNs"),
    account: Optional[str] = typer.Option(None, "--account", help="Account id substituted into ARNs"),
    partition: Optional[str] = typer.Option(None, "--partition", help="Partition substituted into ARNs (aws, aws-cn, aws-us-gov, ...)"),
    individual_policies: bool = typer.Option(False, "--individual-policies", help="One policy per SDK call instead of merged policies"),
    minimize_policy_size: bool = typer.Option(False, "--minimize-policy-size", help="Allow statements of different services to merge"),
    explain: bool = typer.Option(False, "--explain", help="Include per-call explanations in the output"),
    account_context: bool = typer.Option(False, "--account-context", help="Use Resource Explorer to fill ARNs from existing resources"),
    terraform_dir: Optional[Path] = typer.Option(None, "--terraform-dir", help="Fill ARNs from the Terraform state of this directory"),
    tolerate_context_errors: bool = typer.Option(False, "--tolerate-context-errors", help="Continue without account/Terraform context if fetching it fails"),
    upload: bool = typer.Option(False, "--upload-policies", help="Create the generated policies as IAM managed policies"),
    policy_prefix: str = typer.Option(DEFAULT_POLICY_PREFIX, "--policy-prefix", help="Name prefix for uploaded policies"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the JSON to this file instead of stdout"),
    pretty: bool = typer.Option(False, "--pretty", help="Pretty-print JSON output"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Do not read or write the service reference cache"),
    config_path: Path = typer.Option(CONFIG_FILE, "--config", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
) -> None:
    """Generate least-privilege IAM policies for the AWS SDK calls in source code."""
    _configure_logging(verbose, quiet)
    try:
        settings = load_settings(
            config_path,
            region=region,
            account=account,
            partition=partition,
            disable_cache=True if no_cache else None,
        )
        config = GeneratePolicyConfig(
            source_files=source_files,
            language=language,
            service_hints=_split_hints(service_hints),
            aws_context=AwsContext(partition=settings.partition, region=settings.region, account=settings.account),
            individual_policies=individual_policies,
            minimize_policy_size=minimize_policy_size,
            explain=explain,
            use_account_context=account_context,
            terraform_dir=terraform_dir,
            tolerate_context_errors=tolerate_context_errors,
            settings=settings,
        )
        result = asyncio.run(generate_policies(config))
        upload_result = None
        if upload and result.policies:
            upload_result = asyncio.run(upload_policies(result.policies, prefix=policy_prefix))
    except IamPilotError as e:
        print_error(e)
        raise typer.Exit(code=1)

    content = to_json(policy_output(result, upload_result), pretty=pretty)
    if output is not None:
        write_output(content, output)
    else:
        typer.echo(content, nl=False)
    if not quiet:
        print_generation_summary(result)
        if upload_result is not None:
            print_upload_result(upload_result)
    if upload_result is not None and upload_result.failed:
        raise typer.Exit(code=1)


@app.command(name="extract-sdk-calls")
def extract_sdk_calls_command(
    source_files: list[Path] = typer.Argument(..., help="Source files or directories to analyze"),
    language: Optional[str] = typer.Option(None, "--language", "-l", help="python, javascript, typescript or go"),
    service_hints: Optional[list[str]] = typer.Option(None, "--service-hints", "-s", help="Restrict services considered"),
    pretty: bool = typer.Option(False, "--pretty", help="Pretty-print JSON output"),
    config_path: Path = typer.Option(CONFIG_FILE, "--config", help="Config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only log errors"),
) -> None:
    """List the AWS SDK calls found in source code."""
    _configure_logging(verbose, quiet)
    try:
        settings = load_settings(config_path)
        extracted = extract_sdk_calls(source_files, language, _split_hints(service_hints), catalog_for(settings))
    except IamPilotError as e:
        print_error(e)
        raise typer.Exit(code=1)
    typer.echo(to_json(extraction_output(extracted), pretty=pretty), nl=False)


@app.command(name="fix-access-denied")
def fix_access_denied(
    message: str = typer.Argument(..., help="AccessDenied error text, or - to read it from stdin"),
    apply: bool = typer.Option(False, "--apply", help="Add the statement to an inline policy on the principal"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation before applying"),
    policy_name: str = typer.Option(ApplyOptions().policy_name, "--policy-name", help="Inline policy to update"),
    skip_account_check: bool = typer.Option(False, "--skip-account-check", help="Do not compare the principal's account with the caller's"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Explain an AccessDenied error and synthesize the statement that fixes it."""
    _configure_logging(verbose, False)
    if message == "-":
        message = sys.stdin.read()
    service = DenialService()
    try:
        plan = service.plan(message)
        print_plan(plan)
        if not apply:
            return
        if not plan.eligible:
            console.print("[yellow]Nothing applied: this denial cannot be fixed with an identity policy.[/yellow]")
            raise typer.Exit(code=1)
        if not yes and not typer.confirm(f"Add this statement to inline policy {policy_name}?", err=True):
            console.print("[dim]Not applied.[/dim]")
            return
        result = asyncio.run(
            service.apply(plan, ApplyOptions(policy_name=policy_name, skip_account_check=skip_account_check))
        )
    except IamPilotError as e:
        print_error(e)
        raise typer.Exit(code=1)
    print_apply_result(result)


@app.command()
def configure(
    partition: Optional[str] = typer.Option(None, "--partition"),
    region: Optional[str] = typer.Option(None, "--region"),
    account: Optional[str] = typer.Option(None, "--account"),
    service_reference_dir: Optional[Path] = typer.Option(None, "--service-reference-dir", help="Local mirror of service reference documents"),
    catalog_dir: Optional[Path] = typer.Option(None, "--catalog-dir", help="Local service catalog mirror"),
    config_path: Path = typer.Option(CONFIG_FILE, "--config", help="Config file"),
) -> None:
    """Save default settings."""
    try:
        config = load_config(config_path)
    except IamPilotError as e:
        print_error(e)
        raise typer.Exit(code=1)
    updates = {
        "partition": partition,
        "region": region,
        "account": account,
        "service_reference_dir": str(service_reference_dir) if service_reference_dir else None,
        "catalog_dir": str(catalog_dir) if catalog_dir else None,
    }
    config.update({k: v for k, v in updates.items() if v is not None})
    path = save_config(config, config_path)
    console.print(f"[green]Saved settings to {path}[/green]")


@app.command()
def version() -> None:
    """Show the iampilot version."""
    typer.echo(f"iampilot {__version__}")
