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

"""Pydantic models for enriched calls: IAM actions, resources and ARN templates."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from iampilot.models.calls import SdkMethodCall

PLACEHOLDER_RE = re.compile(r"\$\{([^}]*)\}")

# Always filled from the AWS context, never from call arguments.
CONTEXT_PLACEHOLDERS = frozenset({"partition", "region", "account"})


class ArnTemplate(BaseModel):
    """An ARN format string with ``${Name}`` placeholders."""

    model_config = ConfigDict(frozen=True)

    template: str
    variables: list[str] = Field(default_factory=list)

    @classmethod
    def parse(cls, template: str) -> ArnTemplate:
        """Parse a template, raising ValueError on an empty ``${}`` placeholder."""
        variables: list[str] = []
        for match in PLACEHOLDER_RE.finditer(template):
            name = match.group(1).strip()
            if not name:
                raise ValueError(f"empty placeholder in ARN template '{template}'")
            if name.lower() in CONTEXT_PLACEHOLDERS or name in variables:
                continue
            variables.append(name)
        return cls(template=template, variables=variables)


class Resource(BaseModel):
    """A resource type an action applies to; ``"*"`` means no specific type."""

    model_config = ConfigDict(frozen=True)

    resource_type_name: str
    arn_templates: Optional[list[str]] = None


class Explanation(BaseModel):
    """Human-readable trail of which tables and strategies produced an action."""

    reasons: list[str] = Field(default_factory=list)

    def add(self, reason: str) -> None:
        if reason not in self.reasons:
            self.reasons.append(reason)


class Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    resources: list[Resource] = Field(default_factory=list)
    conditions: list[str] = Field(default_factory=list)
    explanation: Explanation = Field(default_factory=Explanation)

    @property
    def service(self) -> str:
        return self.name.split(":", 1)[0]

    @property
    def operation(self) -> str:
        return self.name.split(":", 1)[-1]


class EnrichedSdkMethodCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    method_name: str
    service: str
    actions: list[Action] = Field(default_factory=list)
    source_call: SdkMethodCall
