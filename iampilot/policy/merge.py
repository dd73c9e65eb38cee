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

"""Statement merging and size-bounded packing of generated policies."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import BaseModel

from iampilot.models.policy import PolicyDocument, PolicyStatement, condition_key

logger = logging.getLogger(__name__)

# IAM managed policy limit, counted without whitespace.
MAX_MANAGED_POLICY_SIZE = 6144


class PolicyMergerConfig(BaseModel):
    allow_cross_service_merging: bool = False
    max_policy_size: int = MAX_MANAGED_POLICY_SIZE


# ── Sids ──


def _pascal(text: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in re.split(r"[^A-Za-z0-9]+", text) if part)


def statement_sid(action: str) -> str:
    """``s3:GetObject`` -> ``AllowS3GetObject``."""
    service, _, name = action.partition(":")
    return "Allow" + _pascal(service) + _pascal(name)


def assign_sids(statements: list[PolicyStatement]) -> list[PolicyStatement]:
    """Give each statement a Sid from its first action, suffixing 1, 2, ... on collision."""
    used: set[str] = set()
    counters: dict[str, int] = {}
    assigned: list[PolicyStatement] = []
    for statement in statements:
        base = statement_sid(statement.action[0]) if statement.action else "Allow"
        sid = base
        while sid in used:
            counters[base] = counters.get(base, 0) + 1
            sid = f"{base}{counters[base]}"
        used.add(sid)
        assigned.append(statement.model_copy(update={"sid": sid}))
    return assigned


def policy_size(document: PolicyDocument) -> int:
    text = json.dumps(document.to_dict(), separators=(",", ":"))
    return len("".join(text.split()))


# ── Merge ──


class PolicyMerger:
    def __init__(self, config: Optional[PolicyMergerConfig] = None) -> None:
        self.config = config or PolicyMergerConfig()

    def merge_statements(self, statements: list[PolicyStatement]) -> list[PolicyStatement]:
        """Combine statements with the same resources and condition.

        Output is sorted, so it does not depend on input order.
        """
        groups: dict[tuple[tuple[str, ...], str, str], set[str]] = {}
        conditions: dict[str, Optional[dict[str, Any]]] = {}
        for statement in statements:
            resources = tuple(sorted(set(statement.resource)))
            cond = condition_key(statement.condition)
            conditions.setdefault(cond, statement.condition)
            for action in statement.action:
                service = "" if self.config.allow_cross_service_merging else action.split(":", 1)[0]
                groups.setdefault((resources, cond, service), set()).add(action)

        merged = [
            PolicyStatement(
                action=sorted(actions),
                resource=list(resources),
                condition=conditions[cond],
            )
            for (resources, cond, _), actions in groups.items()
        ]
        merged.sort(key=lambda s: (s.action[0], s.resource, condition_key(s.condition)))
        return merged

    def pack(self, statements: list[PolicyStatement]) -> list[PolicyDocument]:
        """Pack statements in order into documents under the size limit."""
        documents: list[PolicyDocument] = []
        current: list[PolicyStatement] = []
        for statement in statements:
            candidate = PolicyDocument(statement=assign_sids(current + [statement]))
            if current and policy_size(candidate) > self.config.max_policy_size:
                documents.append(PolicyDocument(statement=assign_sids(current)))
                current = [statement]
                continue
            current.append(statement)
        if current:
            document = PolicyDocument(statement=assign_sids(current))
            if len(current) == 1 and policy_size(document) > self.config.max_policy_size:
                logger.warning("Statement %s alone exceeds %d characters", current[0].action[0], self.config.max_policy_size)
            documents.append(document)
        return documents

    def merge(self, documents: list[PolicyDocument]) -> list[PolicyDocument]:
        statements = [s for d in documents for s in d.statement]
        if not statements:
            return []
        merged = self.merge_statements(statements)
        packed = self.pack(merged)
        logger.info("Merged %d statements into %d statements across %d policies", len(statements), len(merged), len(packed))
        return packed
