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

"""Policy generation: enriched calls to IAM policy documents.

Each enriched call yields one document holding one Allow statement per
action. A (action, resources) pair already emitted earlier in the run is not
emitted again, and a call left with nothing new yields no document.
"""

from __future__ import annotations

import logging
from typing import Optional

from iampilot.enrichment.placeholders import WILDCARD, substitute_context, wildcard_placeholders
from iampilot.errors import PolicyGenerationError
from iampilot.models.context import AwsContext
from iampilot.models.enrichment import Action, ArnTemplate, EnrichedSdkMethodCall
from iampilot.models.policy import (
    ActionExplanation,
    CallExplanation,
    GeneratePoliciesResult,
    PolicyDocument,
    PolicyStatement,
    PolicyWithMetadata,
    StatementKey,
)
from iampilot.policy.merge import PolicyMerger, PolicyMergerConfig, assign_sids

logger = logging.getLogger(__name__)


class PolicyGenerationEngine:
    def __init__(
        self,
        aws_context: Optional[AwsContext] = None,
        merger_config: Optional[PolicyMergerConfig] = None,
    ) -> None:
        self.aws_context = aws_context or AwsContext()
        self.merger = PolicyMerger(merger_config)

    def expand_template(self, template: str) -> str:
        """Concrete resource for a template; leftover placeholders become wildcards."""
        try:
            ArnTemplate.parse(template)
        except ValueError as e:
            raise PolicyGenerationError(str(e), template=template) from e
        return wildcard_placeholders(substitute_context(template, self.aws_context))

    def action_resources(self, action: Action) -> list[str]:
        resources: list[str] = []
        for resource in action.resources:
            for template in resource.arn_templates or []:
                arn = self.expand_template(template)
                if arn not in resources:
                    resources.append(arn)
        if not resources or WILDCARD in resources:
            return [WILDCARD]
        return resources

    def generate_policies(self, enriched_calls: list[EnrichedSdkMethodCall]) -> GeneratePoliciesResult:
        seen: set[StatementKey] = set()
        policies: list[PolicyWithMetadata] = []
        explanations: list[CallExplanation] = []

        for call in enriched_calls:
            statements: list[PolicyStatement] = []
            for action in call.actions:
                statement = PolicyStatement(action=[action.name], resource=self.action_resources(action))
                key = statement.statement_keys()[0]
                if key in seen:
                    logger.debug("Duplicate statement for %s on %s", action.name, ", ".join(statement.resource))
                    continue
                seen.add(key)
                statements.append(statement)
            explanations.append(self._explain(call))
            if statements:
                policies.append(PolicyWithMetadata(policy=PolicyDocument(statement=assign_sids(statements))))

        logger.info("Generated %d policies from %d enriched calls", len(policies), len(enriched_calls))
        return GeneratePoliciesResult(policies=policies, explanations=explanations)

    def merge_policies(self, policies: list[PolicyWithMetadata]) -> list[PolicyWithMetadata]:
        merged = self.merger.merge([p.policy for p in policies])
        return [PolicyWithMetadata(policy=document) for document in merged]

    @staticmethod
    def _explain(call: EnrichedSdkMethodCall) -> CallExplanation:
        location = call.source_call.location
        return CallExplanation(
            method_name=call.method_name,
            service=call.service,
            location=str(location) if location else None,
            actions=[ActionExplanation(action=a.name, reasons=list(a.explanation.reasons)) for a in call.actions],
        )
