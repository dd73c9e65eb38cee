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

"""ARN placeholder substitution.

Placeholders other than Partition/Region/Account are filled by an ordered
chain of strategies: a literal call argument, then a single matching ARN from
the account resource context, then one from Terraform state, and finally a
wildcard. The first strategy that returns a value wins.
"""

from __future__ import annotations

import logging
import re
from typing import NamedTuple, Optional, Protocol

from iampilot.models.context import AccountResourceContext, AwsContext, TerraformStateContext
from iampilot.models.enrichment import CONTEXT_PLACEHOLDERS, PLACEHOLDER_RE

logger = logging.getLogger(__name__)

WILDCARD = "*"


class PlaceholderRequest(NamedTuple):
    name: str
    service: str
    resource_type: str
    template: str
    arguments: dict[str, str]

    @property
    def context_key(self) -> str:
        return f"{self.service}:{self.resource_type}"


class Resolution(NamedTuple):
    value: str
    reason: str


class PlaceholderStrategy(Protocol):
    def resolve(self, request: PlaceholderRequest) -> Optional[Resolution]: ...


# ── Template helpers ──


def normalize_name(name: str) -> str:
    return name.replace("_", "").replace("-", "").lower()


def substitute_context(template: str, context: AwsContext) -> str:
    """Replace ``${Partition}``, ``${Region}`` and ``${Account}`` in any case."""
    values = {"partition": context.partition, "region": context.region, "account": context.account}

    def repl(match: re.Match) -> str:
        return values.get(match.group(1).strip().lower(), match.group(0))

    return PLACEHOLDER_RE.sub(repl, template)


def wildcard_placeholders(template: str) -> str:
    return PLACEHOLDER_RE.sub(WILDCARD, template)


def template_pattern(template: str) -> re.Pattern:
    """Regex matching concrete ARNs of this template, one group per placeholder."""
    parts: list[str] = []
    pos = 0
    for match in PLACEHOLDER_RE.finditer(template):
        parts.append(re.escape(template[pos:match.start()]))
        parts.append("(.+?)" if match.group(1).strip().lower() not in ("region", "account") else "(.*?)")
        pos = match.end()
    parts.append(re.escape(template[pos:]))
    return re.compile("^" + "".join(parts) + "$")


def value_from_arn(template: str, arn: str, placeholder: str) -> Optional[str]:
    match = template_pattern(template).match(arn)
    if match is None:
        return None
    names = [m.group(1).strip() for m in PLACEHOLDER_RE.finditer(template)]
    for index, name in enumerate(names):
        if name == placeholder:
            return match.group(index + 1)
    return None


def _literal_component(value: str) -> Optional[str]:
    """The part of an argument value that names the resource."""
    if "${" in value:
        return None
    if value.startswith(("https://", "http://")):
        segments = [s for s in value.split("?", 1)[0].split("/") if s]
        return segments[-1] if len(segments) > 2 else None
    if value.startswith("arn:"):
        parts = value.split(":", 5)
        if len(parts) == 6 and parts[5]:
            return re.split(r"[/:]", parts[5])[-1] or None
        return None
    return value or None


# ── Strategies ──


class LiteralArgumentStrategy:
    """Fill a placeholder from a resolved argument with a matching name."""

    def __init__(self, aliases: Optional[dict[str, list[str]]] = None) -> None:
        self.aliases = {k: [normalize_name(a) for a in v] for k, v in (aliases or {}).items()}

    def candidate_names(self, placeholder: str) -> list[str]:
        name = normalize_name(placeholder)
        names = [name]
        for suffix in ("name", "id"):
            if name.endswith(suffix) and len(name) > len(suffix):
                names.append(name[: -len(suffix)])
        names.extend(self.aliases.get(name, []))
        return list(dict.fromkeys(names))

    def resolve(self, request: PlaceholderRequest) -> Optional[Resolution]:
        if not request.arguments:
            return None
        by_name = {normalize_name(k): (k, v) for k, v in request.arguments.items()}
        for candidate in self.candidate_names(request.name):
            if candidate not in by_name:
                continue
            arg, raw = by_name[candidate]
            value = _literal_component(raw)
            if value is not None:
                return Resolution(value, f"${{{request.name}}} from argument {arg}")
        return None


class _ContextStrategy:
    source = "context"

    def arns_for(self, key: str) -> list[str]:
        raise NotImplementedError

    def resolve(self, request: PlaceholderRequest) -> Optional[Resolution]:
        arns = self.arns_for(request.context_key)
        if len(arns) != 1:
            if len(arns) > 1:
                logger.debug("%d %s ARNs for %s; not using context", len(arns), self.source, request.context_key)
            return None
        value = value_from_arn(request.template, arns[0], request.name)
        if not value:
            return None
        return Resolution(value, f"${{{request.name}}} from {self.source} ({arns[0]})")


class AccountContextStrategy(_ContextStrategy):
    source = "account resources"

    def __init__(self, context: Optional[AccountResourceContext]) -> None:
        self.context = context

    def arns_for(self, key: str) -> list[str]:
        return self.context.arns_for(key) if self.context is not None else []


class TerraformContextStrategy(_ContextStrategy):
    source = "terraform state"

    def __init__(self, context: Optional[TerraformStateContext]) -> None:
        self.context = context

    def arns_for(self, key: str) -> list[str]:
        return self.context.arns_for(key) if self.context is not None else []


class WildcardStrategy:
    def resolve(self, request: PlaceholderRequest) -> Optional[Resolution]:
        return Resolution(WILDCARD, f"${{{request.name}}} unresolved, using wildcard")


# ── Chain ──


class PlaceholderResolver:
    def __init__(self, strategies: list[PlaceholderStrategy], aws_context: Optional[AwsContext] = None) -> None:
        self.strategies = strategies
        self.aws_context = aws_context

    @classmethod
    def default(
        cls,
        aliases: Optional[dict[str, list[str]]] = None,
        account_context: Optional[AccountResourceContext] = None,
        terraform_context: Optional[TerraformStateContext] = None,
        aws_context: Optional[AwsContext] = None,
    ) -> PlaceholderResolver:
        return cls(
            [
                LiteralArgumentStrategy(aliases),
                AccountContextStrategy(account_context),
                TerraformContextStrategy(terraform_context),
                WildcardStrategy(),
            ],
            aws_context,
        )

    def resolve(self, request: PlaceholderRequest) -> Optional[Resolution]:
        for strategy in self.strategies:
            resolution = strategy.resolve(request)
            if resolution is not None:
                return resolution
        return None

    def expand(
        self,
        template: str,
        service: str,
        resource_type: str,
        arguments: dict[str, str],
    ) -> tuple[str, list[str]]:
        """Expand one template, returning the ARN and the reasons for each substitution.

        Placeholders no strategy resolves are left in place.
        """
        reasons: list[str] = []
        resolved: dict[str, str] = {}

        def repl(match: re.Match) -> str:
            name = match.group(1).strip()
            if name.lower() in CONTEXT_PLACEHOLDERS:
                return match.group(0)
            if name not in resolved:
                request = PlaceholderRequest(name, service, resource_type, template, arguments)
                resolution = self.resolve(request)
                if resolution is None:
                    return match.group(0)
                resolved[name] = resolution.value
                reasons.append(resolution.reason)
            return resolved[name]

        expanded = PLACEHOLDER_RE.sub(repl, template)
        if self.aws_context is not None:
            expanded = substitute_context(expanded, self.aws_context)
        return expanded, reasons
