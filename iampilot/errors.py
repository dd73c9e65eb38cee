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

"""Typed errors raised across the extraction, enrichment and generation stages.

Every error carries a ``context`` dict with the structured details needed to
act on it (service name, file path, offending template) so a failure can be
diagnosed without re-running in verbose mode.
"""

from __future__ import annotations

from typing import Any, Optional


class IamPilotError(Exception):
    """Base class for all iampilot errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(IamPilotError):
    """Invalid settings file or environment override."""


class ValidationError(IamPilotError):
    """Caller-supplied input failed validation."""


# ── Extraction ──


class UnsupportedLanguageError(IamPilotError):
    def __init__(self, language: str) -> None:
        super().__init__(f"Unsupported language: {language}", language=language)
        self.language = language


class UnsupportedFileLanguageError(IamPilotError):
    def __init__(self, path: str, extension: str) -> None:
        super().__init__(
            f"Cannot determine source language from extension '{extension or '<none>'}'",
            path=path,
        )
        self.path = path
        self.extension = extension


class MethodExtractionError(IamPilotError):
    """Source text could not be parsed as valid syntax for its language."""

    def __init__(self, path: str, detail: str, line: Optional[int] = None) -> None:
        super().__init__(f"Failed to extract SDK calls: {detail}", path=path, line=line)
        self.path = path
        self.detail = detail
        self.line = line


class InvalidServiceHintsError(IamPilotError):
    def __init__(self, invalid: list[str], suggestions: dict[str, list[str]]) -> None:
        parts = []
        for hint in invalid:
            close = suggestions.get(hint) or []
            if close:
                parts.append(f"'{hint}' (did you mean: {', '.join(close)}?)")
            else:
                parts.append(f"'{hint}'")
        super().__init__(f"Unknown service hints: {'; '.join(parts)}")
        self.invalid = invalid
        self.suggestions = suggestions


# ── Catalog ──


class ServiceReferenceError(IamPilotError):
    """Catalog data for one service is missing or malformed."""

    def __init__(self, message: str, service: str, **context: Any) -> None:
        super().__init__(message, service=service, **context)
        self.service = service


class ServiceReferenceNotFoundError(ServiceReferenceError):
    def __init__(self, service: str) -> None:
        super().__init__(f"No service reference found for '{service}'", service)


class ServiceReferenceParseError(ServiceReferenceError):
    def __init__(self, service: str, detail: str, source: Optional[str] = None) -> None:
        super().__init__(f"Malformed service reference: {detail}", service, source=source)


class OperationActionMapNotFoundError(ServiceReferenceError):
    def __init__(self, service: str, operation: str) -> None:
        super().__init__(
            f"No authorized actions known for operation '{operation}'",
            service,
            operation=operation,
        )
        self.operation = operation


class OperationActionMapParseError(ServiceReferenceError):
    def __init__(self, service: str, detail: str) -> None:
        super().__init__(f"Malformed operation to action mapping: {detail}", service)


# ── Enrichment / generation ──


class EnrichmentError(IamPilotError):
    def __init__(self, message: str, service: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, service=service, **context)
        self.service = service


class ResourceMatchError(EnrichmentError):
    """A resource type could not be matched to the service reference."""


class PolicyGenerationError(IamPilotError):
    def __init__(self, message: str, template: Optional[str] = None) -> None:
        super().__init__(message, template=template)
        self.template = template


# ── Resource context ──


class AccountResourceContextError(IamPilotError):
    """STS or Resource Explorer call failed."""


class TerraformStateCommandError(IamPilotError):
    def __init__(self, command: str, stderr: str) -> None:
        super().__init__(f"Terraform command failed: {command}", stderr=stderr.strip() or None)
        self.command = command
        self.stderr = stderr


class TerraformStateParseError(IamPilotError):
    def __init__(self, message: str, state: str = "") -> None:
        # Full state can be huge, keep only the head for display.
        super().__init__(message, state=state[:200] or None)
        self.state = state


# ── AccessDenied ──


class AccessDeniedParseError(IamPilotError):
    def __init__(self, message: str = "No principal/action/resource found in AccessDenied message") -> None:
        super().__init__(message)


class UnsupportedPrincipalError(IamPilotError):
    def __init__(self, arn: str, reason: str) -> None:
        super().__init__(f"Unsupported principal: {reason}", principal=arn)
        self.arn = arn
        self.reason = reason


class ApplyError(IamPilotError):
    """Apply refused; ``reason_code`` is a stable machine-readable tag."""

    reason_code = "apply_failed"
    hint = ""


class NotEligibleError(ApplyError):
    reason_code = "not_eligible"
    hint = "only implicit identity-policy denials can be fixed automatically"


class CrossAccountError(ApplyError):
    reason_code = "cross_account"
    hint = "principal belongs to a different account than the current credentials"


class DuplicateStatementError(ApplyError):
    reason_code = "duplicate_statement"
    hint = "the inline policy already grants this permission"

    def __init__(self, policy_name: str, action: str, resource: str) -> None:
        super().__init__(
            "Inline policy already allows this action on this resource",
            policy_name=policy_name,
            action=action,
            resource=resource,
        )
        self.policy_name = policy_name
        self.action = action
        self.resource = resource
