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

"""Pydantic models for AccessDenied diagnosis and remediation."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from iampilot.models.policy import PolicyDocument


class DenialType(str, Enum):
    """Why the request was denied. Only IMPLICIT_IDENTITY can be auto-fixed."""

    IMPLICIT_IDENTITY = "ImplicitIdentity"
    EXPLICIT_IDENTITY = "ExplicitIdentity"
    RESOURCE_POLICY = "ResourcePolicy"
    UNSUPPORTED = "Unsupported"


class ParsedDenial(BaseModel):
    model_config = ConfigDict(frozen=True)

    principal_arn: str
    action: str
    resource: str
    denial_type: DenialType
    # Set only for DenialType.UNSUPPORTED
    reason: Optional[str] = None


class PrincipalKind(str, Enum):
    USER = "user"
    ROLE = "role"


class PrincipalInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: PrincipalKind
    name: str
    account_id: str
    partition: str
    arn: str


class PlanResult(BaseModel):
    diagnosis: ParsedDenial
    actions: list[str] = Field(default_factory=list)
    policy: PolicyDocument

    @property
    def eligible(self) -> bool:
        return self.diagnosis.denial_type is DenialType.IMPLICIT_IDENTITY


class ApplyOptions(BaseModel):
    policy_name: str = "IamPilotAccessDeniedFixes"
    skip_account_check: bool = False


class ApplyResult(BaseModel):
    policy_name: str
    principal: PrincipalInfo
    statement_count: int
    created: bool
