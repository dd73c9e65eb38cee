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

"""Pipeline entry points.

extract -> (account context || terraform state) -> enrich -> generate -> merge
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Optional

import aioboto3
from pydantic import BaseModel, Field

from iampilot.catalog.service_catalog import ServiceCatalog, get_service_catalog
from iampilot.catalog.service_reference import ServiceReferenceLoader, get_service_reference_loader
from iampilot.context.account import fetch_account_context
from iampilot.context.terraform import fetch_terraform_state
from iampilot.enrichment.engine import EnrichmentEngine
from iampilot.errors import AccountResourceContextError, TerraformStateCommandError, TerraformStateParseError
from iampilot.extraction.engine import ExtractionEngine
from iampilot.models.calls import ExtractedMethods
from iampilot.models.context import AccountResourceContext, AwsContext, TerraformStateContext
from iampilot.models.policy import GeneratePoliciesResult
from iampilot.policy.generation import PolicyGenerationEngine
from iampilot.policy.merge import PolicyMergerConfig
from iampilot.settings import Settings

logger = logging.getLogger(__name__)

_CONTEXT_ERRORS = (AccountResourceContextError, TerraformStateCommandError, TerraformStateParseError)


class GeneratePolicyConfig(BaseModel):
    source_files: list[Path]
    language: Optional[str] = None
    service_hints: Optional[list[str]] = None
    aws_context: AwsContext = Field(default_factory=AwsContext)
    individual_policies: bool = False
    minimize_policy_size: bool = False
    explain: bool = False
    use_account_context: bool = False
    terraform_dir: Optional[Path] = None
    # Continue with an empty context when a fetch fails
    tolerate_context_errors: bool = False
    settings: Settings = Field(default_factory=Settings)


def catalog_for(settings: Settings) -> ServiceCatalog:
    return get_service_catalog(settings.catalog_dir)


def loader_for(settings: Settings) -> ServiceReferenceLoader:
    return get_service_reference_loader(
        mirror_dir=settings.service_reference_dir,
        base_url=settings.service_reference_url,
        cache_dir=settings.cache_dir,
        disable_cache=settings.disable_cache,
        timeout=settings.http_timeout,
    )


def extract_sdk_calls(
    source_files: list[Path],
    language: Optional[str] = None,
    service_hints: Optional[list[str]] = None,
    catalog: Optional[ServiceCatalog] = None,
) -> ExtractedMethods:
    return ExtractionEngine(catalog or get_service_catalog()).extract(source_files, language, service_hints)


async def get_account_context(session: Optional[aioboto3.Session] = None) -> AccountResourceContext:
    return await fetch_account_context(session)


async def get_terraform_state(directory: Path, timeout: int = 120) -> TerraformStateContext:
    return await asyncio.to_thread(fetch_terraform_state, directory, timeout)


async def _none() -> None:
    return None


async def _tolerant(name: str, fetch: Awaitable[Any], tolerate: bool) -> Any:
    try:
        return await fetch
    except _CONTEXT_ERRORS as e:
        if not tolerate:
            raise
        logger.warning("Continuing without %s: %s", name, e)
        return None


async def fetch_contexts(
    config: GeneratePolicyConfig,
) -> tuple[Optional[AccountResourceContext], Optional[TerraformStateContext]]:
    """Fetch the account and Terraform contexts concurrently; both finish before returning."""
    account_fetch = (
        _tolerant("account context", get_account_context(), config.tolerate_context_errors)
        if config.use_account_context
        else _none()
    )
    terraform_fetch = (
        _tolerant(
            "terraform state",
            get_terraform_state(config.terraform_dir, config.settings.terraform_timeout),
            config.tolerate_context_errors,
        )
        if config.terraform_dir is not None
        else _none()
    )
    account, terraform = await asyncio.gather(account_fetch, terraform_fetch)
    return account, terraform


async def generate_policies(
    config: GeneratePolicyConfig,
    catalog: Optional[ServiceCatalog] = None,
    loader: Optional[ServiceReferenceLoader] = None,
) -> GeneratePoliciesResult:
    catalog = catalog or catalog_for(config.settings)
    extracted = extract_sdk_calls(config.source_files, config.language, config.service_hints, catalog)
    if not extracted.methods:
        logger.info("No SDK calls found")
        return GeneratePoliciesResult(policies=[], explanations=[] if config.explain else None)

    account_context, terraform_context = await fetch_contexts(config)

    enrichment = EnrichmentEngine(
        catalog,
        loader or loader_for(config.settings),
        account_context=account_context,
        terraform_context=terraform_context,
        aws_context=config.aws_context,
    )
    enriched = enrichment.enrich_methods(extracted.methods, extracted.sdk_type)

    generator = PolicyGenerationEngine(
        aws_context=config.aws_context,
        merger_config=PolicyMergerConfig(allow_cross_service_merging=config.minimize_policy_size),
    )
    result = generator.generate_policies(enriched)
    policies = result.policies if config.individual_policies else generator.merge_policies(result.policies)
    return GeneratePoliciesResult(
        policies=policies,
        explanations=result.explanations if config.explain else None,
    )
