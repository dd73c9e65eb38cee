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

"""Principal ARN resolution for the apply path."""

from __future__ import annotations

from iampilot.errors import UnsupportedPrincipalError
from iampilot.models.denial import PrincipalInfo, PrincipalKind


def resolve_principal(arn: str) -> PrincipalInfo:
    """Resolve a user, role or assumed-role session ARN to the IAM entity to modify."""
    parts = arn.split(":", 5)
    if len(parts) != 6 or parts[0] != "arn" or parts[2] not in ("iam", "sts") or not parts[4]:
        raise UnsupportedPrincipalError(arn, "not an IAM principal ARN")
    partition, service, account_id, resource = parts[1], parts[2], parts[4], parts[5]
    kind, _, path = resource.partition("/")

    if service == "iam" and kind in ("user", "role") and path:
        return PrincipalInfo(
            kind=PrincipalKind(kind),
            name=path.rsplit("/", 1)[-1],
            account_id=account_id,
            partition=partition,
            arn=arn,
        )
    if service == "sts" and kind == "assumed-role":
        role_name = path.split("/", 1)[0]
        if not role_name:
            raise UnsupportedPrincipalError(arn, "assumed-role ARN without a role name")
        return PrincipalInfo(
            kind=PrincipalKind.ROLE,
            name=role_name,
            account_id=account_id,
            partition=partition,
            arn=f"arn:{partition}:iam::{account_id}:role/{role_name}",
        )
    raise UnsupportedPrincipalError(arn, f"'{kind or resource}' principals cannot receive inline policies")
