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

"""Plan and apply AccessDenied fixes.

``plan`` is pure: parse the message and build the one-statement policy.
``apply`` writes it into a canonical inline policy on the denied user or role.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional
from urllib.parse import unquote

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from iampilot.denial.parser import normalize_s3_resource, parse
from iampilot.denial.principal import resolve_principal
from iampilot.denial.synthesis import build_inline_allow, build_single_statement
from iampilot.errors import ApplyError, CrossAccountError, NotEligibleError
from iampilot.models.denial import (
    ApplyOptions,
    ApplyResult,
    PlanResult,
    PrincipalInfo,
    PrincipalKind,
)
from iampilot.models.policy import PolicyDocument

logger = logging.getLogger(__name__)


class DenialService:
    def __init__(self, session: Optional[aioboto3.Session] = None) -> None:
        self._session = session

    @property
    def session(self) -> aioboto3.Session:
        if self._session is None:
            self._session = aioboto3.Session()
        return self._session

    def plan(self, message: str) -> PlanResult:
        diagnosis = parse(message)
        resource = normalize_s3_resource(diagnosis.action, diagnosis.resource)
        statement = build_single_statement(diagnosis.action, resource)
        return PlanResult(
            diagnosis=diagnosis,
            actions=[diagnosis.action],
            policy=PolicyDocument(statement=[statement]),
        )

    async def apply(self, plan: PlanResult, options: Optional[ApplyOptions] = None) -> ApplyResult:
        options = options or ApplyOptions()
        diagnosis = plan.diagnosis
        if not plan.eligible:
            raise NotEligibleError(
                f"{diagnosis.denial_type.value} denials cannot be fixed with an identity policy",
                denial_type=diagnosis.denial_type.value,
            )
        principal = resolve_principal(diagnosis.principal_arn)

        try:
            if not options.skip_account_check:
                await self._check_account(principal)
            async with self.session.client("iam") as iam:
                existing = await self._get_inline_policy(iam, principal, options.policy_name)
                document = build_inline_allow(diagnosis.action, diagnosis.resource, existing, options.policy_name)
                await self._put_inline_policy(iam, principal, options.policy_name, document)
        except (BotoCoreError, ClientError) as e:
            raise ApplyError(f"IAM request failed: {e}", principal=principal.arn) from e

        logger.info("Updated inline policy %s on %s %s", options.policy_name, principal.kind.value, principal.name)
        return ApplyResult(
            policy_name=options.policy_name,
            principal=principal,
            statement_count=len(document["Statement"]),
            created=existing is None,
        )

    async def _check_account(self, principal: PrincipalInfo) -> None:
        async with self.session.client("sts") as sts:
            identity = await sts.get_caller_identity()
        if identity["Account"] != principal.account_id:
            raise CrossAccountError(
                "Denied principal is in a different account than the current credentials",
                principal_account=principal.account_id,
                caller_account=identity["Account"],
            )

    @staticmethod
    async def _get_inline_policy(iam: Any, principal: PrincipalInfo, policy_name: str) -> Optional[dict[str, Any]]:
        try:
            if principal.kind is PrincipalKind.USER:
                response = await iam.get_user_policy(UserName=principal.name, PolicyName=policy_name)
            else:
                response = await iam.get_role_policy(RoleName=principal.name, PolicyName=policy_name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "NoSuchEntity":
                return None
            raise
        document = response["PolicyDocument"]
        # Some transports hand back the URL-encoded JSON string
        if isinstance(document, str):
            document = json.loads(unquote(document))
        return document

    @staticmethod
    async def _put_inline_policy(iam: Any, principal: PrincipalInfo, policy_name: str, document: dict[str, Any]) -> None:
        body = json.dumps(document)
        if principal.kind is PrincipalKind.USER:
            await iam.put_user_policy(UserName=principal.name, PolicyName=policy_name, PolicyDocument=body)
        else:
            await iam.put_role_policy(RoleName=principal.name, PolicyName=policy_name, PolicyDocument=body)
