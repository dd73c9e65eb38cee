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

"""Account resource context from AWS Resource Explorer.

Lists every resource the caller's Resource Explorer index can see and groups
ARNs by ``service:resource_type`` (the ResourceType Resource Explorer reports,
e.g. ``s3:bucket``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from iampilot.errors import AccountResourceContextError
from iampilot.models.context import AccountResource, AccountResourceContext

logger = logging.getLogger(__name__)

PAGE_SIZE = 999


async def caller_account_id(session: Optional[aioboto3.Session] = None) -> str:
    session = session or aioboto3.Session()
    try:
        async with session.client("sts") as sts:
            identity = await sts.get_caller_identity()
    except (BotoCoreError, ClientError) as e:
        raise AccountResourceContextError(f"Failed to call sts:GetCallerIdentity: {e}") from e
    return identity["Account"]


async def list_resources(session: Optional[aioboto3.Session] = None) -> list[dict[str, Any]]:
    """All Resource Explorer resources, following NextToken."""
    session = session or aioboto3.Session()
    resources: list[dict[str, Any]] = []
    try:
        async with session.client("resource-explorer-2") as explorer:
            kwargs: dict[str, Any] = {"MaxResults": PAGE_SIZE}
            while True:
                page = await explorer.list_resources(**kwargs)
                resources.extend(page.get("Resources", []))
                token = page.get("NextToken")
                if not token:
                    break
                kwargs["NextToken"] = token
    except (BotoCoreError, ClientError) as e:
        raise AccountResourceContextError(
            f"Failed to call list-resources in resource explorer: {e}"
        ) from e
    return resources


def build_resource_context(resources: list[dict[str, Any]]) -> AccountResourceContext:
    resource_map: dict[str, list[AccountResource]] = {}
    for resource in resources:
        resource_type = resource.get("ResourceType")
        arn = resource.get("Arn")
        if not resource_type or not arn:
            continue
        resource_map.setdefault(resource_type, []).append(AccountResource(arn=arn))
    return AccountResourceContext(resource_map=resource_map)


async def fetch_account_context(session: Optional[aioboto3.Session] = None) -> AccountResourceContext:
    session = session or aioboto3.Session()
    account_id = await caller_account_id(session)
    resources = await list_resources(session)
    context = build_resource_context(resources)
    logger.info(
        "Account %s: %d resources across %d resource types",
        account_id,
        len(resources),
        len(context.resource_map),
    )
    return context
