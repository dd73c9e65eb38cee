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

"""Enrichment: SDK calls to the IAM actions and ARNs they need.

Per call:
1. Resolve candidate services against the catalog (rename tables applied).
2. Canonicalize the method name to a catalog operation, or look it up in the
   service reference's SDK method table, then apply operation renames.
3. Look up the operation's authorized actions in the service reference.
4. Expand each action's ARN templates through the placeholder strategy chain.

Catalog gaps for one call are logged and that call is skipped; everything
else propagates.
"""

from __future__ import annotations

import logging
from typing import Optional

from iampilot.catalog.service_catalog import ServiceCatalog
from iampilot.catalog.service_configuration import ServiceConfiguration, get_service_configuration
from iampilot.catalog.service_reference import (
    AuthorizedAction,
    ServiceReference,
    ServiceReferenceLoader,
)
from iampilot.enrichment.placeholders import PlaceholderResolver
from iampilot.errors import (
    EnrichmentError,
    OperationActionMapNotFoundError,
    ResourceMatchError,
    ServiceReferenceError,
    ServiceReferenceNotFoundError,
)
from iampilot.models.calls import SdkMethodCall, SdkType
from iampilot.models.context import AccountResourceContext, AwsContext, TerraformStateContext
from iampilot.models.enrichment import (
    Action,
    ArnTemplate,
    EnrichedSdkMethodCall,
    Explanation,
    Resource,
)

logger = logging.getLogger(__name__)


class EnrichmentEngine:
    def __init__(
        self,
        catalog: ServiceCatalog,
        loader: ServiceReferenceLoader,
        configuration: Optional[ServiceConfiguration] = None,
        account_context: Optional[AccountResourceContext] = None,
        terraform_context: Optional[TerraformStateContext] = None,
        aws_context: Optional[AwsContext] = None,
    ) -> None:
        self.catalog = catalog
        self.loader = loader
        self.configuration = configuration or get_service_configuration()
        self.resolver = PlaceholderResolver.default(
            aliases=self.configuration.placeholder_aliases,
            account_context=account_context,
            terraform_context=terraform_context,
            aws_context=aws_context,
        )

    def enrich_methods(self, calls: list[SdkMethodCall], sdk_type: SdkType) -> list[EnrichedSdkMethodCall]:
        enriched: list[EnrichedSdkMethodCall] = []
        for call in calls:
            enriched.extend(self.enrich_call(call, sdk_type))
        logger.info("Enriched %d of %d SDK calls", len(enriched), len(calls))
        return enriched

    def enrich_call(self, call: SdkMethodCall, sdk_type: SdkType) -> list[EnrichedSdkMethodCall]:
        """Enrich one call against every candidate service that defines the operation."""
        candidates = call.possible_services or self.catalog.services_for_operation(call.name, sdk_type)
        results: list[EnrichedSdkMethodCall] = []
        for candidate in dict.fromkeys(candidates):
            service = self.configuration.botocore_service_name(candidate)
            operation = self.catalog.resolve_operation(service, call.name, sdk_type)
            if operation is None:
                operation = self._sdk_operation(service, call.name, sdk_type)
            if operation is None:
                logger.debug("%s is not an operation of %s", call.name, service)
                continue
            try:
                actions = self._actions_for_operation(service, operation, call)
            except ServiceReferenceError as e:
                where = f" at {call.location}" if call.location else ""
                logger.warning("Skipping %s.%s%s: %s", service, call.name, where, e)
                continue
            results.append(
                EnrichedSdkMethodCall(method_name=call.name, service=service, actions=actions, source_call=call)
            )
        if not results:
            logger.info("No service defines %s (candidates: %s)", call.name, ", ".join(candidates) or "none")
        return results

    # ── Operation to actions ──

    def _sdk_operation(self, service: str, method: str, sdk_type: SdkType) -> Optional[str]:
        try:
            reference = self.loader.load(self.configuration.rename_service_service_reference(service))
        except ServiceReferenceError as e:
            logger.debug("No SDK method table for %s: %s", service, e)
            return None
        operation = reference.operation_for_sdk_method(method, sdk_type.value)
        if operation is not None:
            logger.debug("%s SDK method %s maps to %s:%s", sdk_type.value, method, service, operation)
        return operation

    def _authorized_actions(
        self, service: str, operation: str, explanation: Explanation
    ) -> tuple[list[AuthorizedAction], ServiceReference]:
        renamed = self.configuration.rename_operation(service, operation)
        if (renamed.service, renamed.operation) != (service, operation):
            explanation.add(f"{service}:{operation} is authorized as {renamed.service}:{renamed.operation}")
        reference_name = self.configuration.rename_service_service_reference(renamed.service)
        reference = self.loader.load(reference_name)

        for op in dict.fromkeys((renamed.operation, operation)):
            authorized = reference.authorized_actions(op)
            if authorized:
                explanation.add(f"Operation {reference_name}:{op} maps to {', '.join(a.full_name for a in authorized)}")
                return authorized, reference

        prefix = self.configuration.rename_service_operation_action_map(renamed.service)
        for op in dict.fromkeys((renamed.operation, operation)):
            if op in reference.actions:
                explanation.add(f"No operation mapping for {reference_name}:{op}; using action {prefix}:{op}")
                return [AuthorizedAction(service=prefix, name=op)], reference
        raise OperationActionMapNotFoundError(reference_name, operation)

    def _reference_for(self, service: str, primary: ServiceReference) -> Optional[ServiceReference]:
        if service == primary.name:
            return primary
        try:
            return self.loader.load(self.configuration.rename_service_service_reference(service))
        except ServiceReferenceNotFoundError:
            logger.warning("No service reference for %s; its actions get no resource detail", service)
            return None

    def _actions_for_operation(self, service: str, operation: str, call: SdkMethodCall) -> list[Action]:
        explanation = Explanation()
        authorized, primary = self._authorized_actions(service, operation, explanation)
        arguments = call.resolved_arguments()
        actions: list[Action] = []
        for authorized_action in authorized:
            reference = self._reference_for(authorized_action.service, primary)
            action_explanation = Explanation(reasons=list(explanation.reasons))
            resources: list[Resource] = []
            ref_action = reference.actions.get(authorized_action.name) if reference else None
            if ref_action is None:
                logger.debug("No action entry for %s", authorized_action.full_name)
            elif not ref_action.resources:
                resources.append(Resource(resource_type_name="*"))
            else:
                for resource_type in ref_action.resources:
                    resources.append(
                        self._resource(authorized_action.service, resource_type, reference, arguments, action_explanation)
                    )
            actions.append(
                Action(
                    name=authorized_action.full_name,
                    resources=resources,
                    conditions=list(ref_action.condition_keys) if ref_action else [],
                    explanation=action_explanation,
                )
            )
        return actions

    # ── Resources ──

    def _templates(self, service: str, resource_type: str, reference: ServiceReference) -> list[str]:
        override = self.configuration.resource_override(service, resource_type)
        if override is not None:
            return [override]
        if resource_type not in reference.resources:
            raise ResourceMatchError(
                f"Resource type '{resource_type}' is not defined by the service reference",
                service=service,
                resource_type=resource_type,
            )
        return reference.resources[resource_type]

    def _resource(
        self,
        service: str,
        resource_type: str,
        reference: ServiceReference,
        arguments: dict[str, str],
        explanation: Explanation,
    ) -> Resource:
        try:
            templates = self._templates(service, resource_type, reference)
        except ResourceMatchError as e:
            logger.info("%s; no resource detail for %s", e, resource_type)
            return Resource(resource_type_name=resource_type, arn_templates=None)

        expanded: list[str] = []
        for template in templates:
            try:
                ArnTemplate.parse(template)
            except ValueError as e:
                raise EnrichmentError(str(e), service=service, template=template) from e
            arn, reasons = self.resolver.expand(template, service, resource_type, arguments)
            for reason in reasons:
                explanation.add(reason)
            if arn not in expanded:
                expanded.append(arn)
        return Resource(resource_type_name=resource_type, arn_templates=expanded)
