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

"""Pydantic models for IAM policy documents and generation results.

Models serialize with the PascalCase keys IAM expects (``Sid``, ``Effect``,
``Action``, ``Resource``); use ``model_dump(by_alias=True, exclude_none=True)``.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

POLICY_VERSION = "2012-10-17"


class _IamModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Effect(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"


class StatementKey(NamedTuple):
    """Deduplication identity of a single-action statement."""

    action: str
    resources: tuple[str, ...]
    condition: str


def condition_key(condition: Optional[dict[str, Any]]) -> str:
    if not condition:
        return ""
    return json.dumps(condition, sort_keys=True, separators=(",", ":"))


class PolicyStatement(_IamModel):
    sid: Optional[str] = None
    effect: Effect = Effect.ALLOW
    action: list[str] = Field(default_factory=list)
    resource: list[str] = Field(default_factory=list)
    condition: Optional[dict[str, Any]] = None

    def statement_keys(self) -> list[StatementKey]:
        resources = tuple(self.resource)
        cond = condition_key(self.condition)
        return [StatementKey(a, resources, cond) for a in self.action]


class PolicyDocument(_IamModel):
    version: str = POLICY_VERSION
    statement: list[PolicyStatement] = Field(default_factory=list)


class PolicyType(str, Enum):
    IDENTITY = "Identity"


class PolicyWithMetadata(_IamModel):
    policy: PolicyDocument
    policy_type: PolicyType = PolicyType.IDENTITY


class ActionExplanation(_IamModel):
    action: str
    reasons: list[str] = Field(default_factory=list)


class CallExplanation(_IamModel):
    """Why a call site contributed the actions it did."""

    method_name: str
    service: str
    location: Optional[str] = None
    actions: list[ActionExplanation] = Field(default_factory=list)


class GeneratePoliciesResult(_IamModel):
    policies: list[PolicyWithMetadata] = Field(default_factory=list)
    explanations: Optional[list[CallExplanation]] = None


# ── Upload ──


class UploadedPolicy(_IamModel):
    policy_name: str
    policy_arn: str


class FailedUpload(_IamModel):
    policy_name: str
    error: str


class BatchUploadResponse(_IamModel):
    successful: list[UploadedPolicy] = Field(default_factory=list)
    failed: list[FailedUpload] = Field(default_factory=list)
