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

"""Pydantic models for the AWS context and resource inventories used to fill ARN placeholders."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal


class AwsContext(BaseModel):
    """Partition, region and account substituted into every ARN template."""

    model_config = ConfigDict(frozen=True)

    partition: str = "aws"
    region: str = "*"
    account: str = "*"


# Services whose ARNs end in a bare name with no resource type segment.
_UNTYPED_RESOURCES = {"sqs": "queue", "sns": "topic"}


class Arn(BaseModel):
    """A concrete ARN split into the parts used for context lookups."""

    model_config = ConfigDict(frozen=True)

    arn: str
    service: str
    resource_type: str

    @classmethod
    def parse(cls, arn: str) -> Optional[Arn]:
        if arn == "*":
            return cls(arn=arn, service="*", resource_type="*")
        parts = arn.split(":", 5)
        if len(parts) < 6 or parts[0] != "arn":
            return None
        service = parts[2]
        resource = parts[5]
        if service == "s3" and not parts[3] and not parts[4]:
            resource_type = "object" if "/" in resource else "bucket"
        elif service in _UNTYPED_RESOURCES:
            resource_type = _UNTYPED_RESOURCES[service]
        else:
            resource_type = resource.split("/", 1)[0].split(":", 1)[0]
        return cls(arn=arn, service=service, resource_type=resource_type)

    @property
    def key(self) -> str:
        return f"{self.service}:{self.resource_type}"


class AccountResource(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)

    arn: str


class AccountResourceContext(BaseModel):
    """Wire shape: ``{"ResourceMap": {"s3:bucket": [{"Arn": "..."}]}}``."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True)

    resource_map: dict[str, list[AccountResource]] = Field(default_factory=dict)

    def arns_for(self, key: str) -> list[str]:
        return [r.arn for r in self.resource_map.get(key, [])]


class TerraformStateContext(BaseModel):
    """ARNs from ``terraform show -json`` keyed like AccountResourceContext."""

    resource_arns: dict[str, list[str]] = Field(default_factory=dict)

    def arns_for(self, key: str) -> list[str]:
        return list(self.resource_arns.get(key, []))
