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

"""Managed policy upload."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from iampilot.models.policy import (
    BatchUploadResponse,
    FailedUpload,
    PolicyWithMetadata,
    UploadedPolicy,
)

logger = logging.getLogger(__name__)

DEFAULT_POLICY_PREFIX = "IamPilotGenerated"


def policy_names(count: int, prefix: str = DEFAULT_POLICY_PREFIX) -> list[str]:
    return [f"{prefix}-{n}" for n in range(1, count + 1)]


async def _create_policy(iam: Any, name: str, policy: PolicyWithMetadata) -> UploadedPolicy | FailedUpload:
    try:
        response = await iam.create_policy(
            PolicyName=name,
            PolicyDocument=json.dumps(policy.policy.to_dict()),
            Description="Generated by iampilot from application source code",
        )
    except (BotoCoreError, ClientError) as e:
        logger.warning("Failed to create policy %s: %s", name, e)
        return FailedUpload(policy_name=name, error=str(e))
    return UploadedPolicy(policy_name=name, policy_arn=response["Policy"]["Arn"])


async def upload_policies(
    policies: list[PolicyWithMetadata],
    prefix: str = DEFAULT_POLICY_PREFIX,
    session: Optional[aioboto3.Session] = None,
) -> BatchUploadResponse:
    """Create one managed policy per document; failures are reported, not raised."""
    session = session or aioboto3.Session()
    names = policy_names(len(policies), prefix)
    async with session.client("iam") as iam:
        results = await asyncio.gather(*(_create_policy(iam, n, p) for n, p in zip(names, policies)))
    response = BatchUploadResponse()
    for result in results:
        if isinstance(result, UploadedPolicy):
            response.successful.append(result)
        else:
            response.failed.append(result)
    return response
