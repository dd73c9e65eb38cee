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

"""Single-statement policy synthesis for AccessDenied fixes."""

from __future__ import annotations

import copy
import re
from typing import Any, Optional

from iampilot.denial.parser import normalize_s3_resource
from iampilot.errors import DuplicateStatementError
from iampilot.models.policy import PolicyDocument, PolicyStatement
from iampilot.policy.merge import statement_sid


def build_single_statement(action: str, resource: str) -> PolicyStatement:
    return PolicyStatement(
        sid=statement_sid(action),
        action=[action],
        resource=[normalize_s3_resource(action, resource)],
    )


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [v for v in value if isinstance(v, str)]


def _wildcard(pattern: str, ignore_case: bool = False) -> re.Pattern[str]:
    # IAM wildcards are only `*` and `?`; everything else matches literally.
    body = re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".")
    flags = re.DOTALL | (re.IGNORECASE if ignore_case else 0)
    return re.compile(body, flags)


def grants(statements: list[dict[str, Any]], action: str, resource: str) -> bool:
    """Whether an unconditional Allow statement already covers the pair."""
    for statement in statements:
        if statement.get("Effect") != "Allow" or statement.get("Condition"):
            continue
        actions = _as_list(statement.get("Action"))
        resources = _as_list(statement.get("Resource"))
        if any(_wildcard(a, ignore_case=True).fullmatch(action) for a in actions) and any(
            _wildcard(r).fullmatch(resource) for r in resources
        ):
            return True
    return False


def build_inline_allow(
    action: str,
    resource: str,
    existing: Optional[dict[str, Any]] = None,
    policy_name: str = "",
) -> dict[str, Any]:
    """Append an Allow for the pair to an inline policy document (or start one).

    Statements already in ``existing`` are kept as they are.
    """
    resource = normalize_s3_resource(action, resource)
    document = copy.deepcopy(existing) if existing else PolicyDocument().to_dict()
    statements = document.get("Statement", [])
    if isinstance(statements, dict):
        statements = [statements]
    if grants(statements, action, resource):
        raise DuplicateStatementError(policy_name, action, resource)

    statement = build_single_statement(action, resource)
    used = {s.get("Sid") for s in statements}
    sid, n = statement.sid, 0
    while sid in used:
        n += 1
        sid = f"{statement.sid}{n}"
    statements.append(statement.model_copy(update={"sid": sid}).to_dict())
    document["Statement"] = statements
    return document
