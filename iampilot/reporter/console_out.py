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

"""Rich output on stderr: progress, errors and AccessDenied diagnoses.

Stdout is reserved for JSON, so everything here goes to stderr.
"""

from __future__ import annotations

import json

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from iampilot.errors import ApplyError, IamPilotError
from iampilot.models.denial import ApplyResult, DenialType, PlanResult
from iampilot.models.policy import BatchUploadResponse, GeneratePoliciesResult

console = Console(stderr=True, soft_wrap=True)


def print_error(error: IamPilotError) -> None:
    console.print(f"[red]Error: {error}[/red]")
    if isinstance(error, ApplyError) and error.hint:
        console.print(f"[dim]  {error.hint}[/dim]")


def print_generation_summary(result: GeneratePoliciesResult) -> None:
    statements = sum(len(p.policy.statement) for p in result.policies)
    console.print(f"[dim]{len(result.policies)} policies, {statements} statements[/dim]")


def print_upload_result(upload: BatchUploadResponse) -> None:
    table = Table(title="Uploaded policies", show_lines=False)
    table.add_column("Policy")
    table.add_column("Result")
    for ok in upload.successful:
        table.add_row(ok.policy_name, f"[green]{ok.policy_arn}[/green]")
    for failed in upload.failed:
        table.add_row(failed.policy_name, f"[red]{failed.error}[/red]")
    console.print(table)


# ── AccessDenied ──

_GUIDANCE = {
    DenialType.IMPLICIT_IDENTITY: (
        "green",
        "No identity-based policy allows this request. iampilot can add the statement "
        "below to an inline policy on the principal (re-run with --apply).",
    ),
    DenialType.EXPLICIT_IDENTITY: (
        "red",
        "An identity-based policy explicitly denies this request. Adding an Allow will not help; "
        "find and change the Deny statement attached to the principal.",
    ),
    DenialType.RESOURCE_POLICY: (
        "yellow",
        "The resource's own policy does not allow this principal. The resource owner must add "
        "the statement below (with a Principal element) to the resource policy.",
    ),
    DenialType.UNSUPPORTED: (
        "yellow",
        "This denial comes from a policy type iampilot cannot modify.",
    ),
}


def _policy_json(document: dict) -> Syntax:
    return Syntax(json.dumps(document, indent=2), "json", theme="ansi_dark", background_color="default")


def print_plan(plan: PlanResult) -> None:
    diagnosis = plan.diagnosis
    color, guidance = _GUIDANCE[diagnosis.denial_type]
    if diagnosis.denial_type is DenialType.UNSUPPORTED and diagnosis.reason:
        guidance += f" ({diagnosis.reason})"

    body = Table.grid(padding=(0, 2))
    body.add_column(style="bold")
    body.add_column()
    body.add_row("Principal", diagnosis.principal_arn)
    body.add_row("Action", diagnosis.action)
    body.add_row("Resource", diagnosis.resource)
    body.add_row("Denial", f"[{color}]{diagnosis.denial_type.value}[/{color}]")
    console.print(Panel(body, title="[bold]AccessDenied[/bold]", border_style=color, expand=True, safe_box=True))
    console.print(guidance)

    if diagnosis.denial_type is DenialType.RESOURCE_POLICY:
        statement = plan.policy.statement[0].to_dict()
        statement["Principal"] = {"AWS": diagnosis.principal_arn}
        console.print(_policy_json(statement))
    elif diagnosis.denial_type is DenialType.IMPLICIT_IDENTITY:
        console.print(_policy_json(plan.policy.to_dict()))


def print_apply_result(result: ApplyResult) -> None:
    verb = "Created" if result.created else "Updated"
    console.print(
        f"[green]{verb} inline policy {result.policy_name} on "
        f"{result.principal.kind.value} {result.principal.name} "
        f"({result.statement_count} statements)[/green]"
    )
