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

"""Rename tables bridging SDK naming, botocore models and IAM service prefixes.

Loaded once from the bundled YAML and shared read-only by every engine.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

from iampilot.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "rules" / "service_configuration.yaml"


class OperationRename(BaseModel):
    service: str
    operation: str


class ServiceConfiguration(BaseModel):
    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)

    rename_services_operation_action_map: dict[str, str] = Field(default_factory=dict)
    rename_services_service_reference: dict[str, str] = Field(default_factory=dict)
    smithy_botocore_service_name_mapping: dict[str, str] = Field(default_factory=dict)
    rename_operations: dict[str, OperationRename] = Field(default_factory=dict)
    resource_overrides: dict[str, dict[str, str]] = Field(default_factory=dict)
    placeholder_aliases: dict[str, list[str]] = Field(default_factory=dict)

    def botocore_service_name(self, sdk_name: str) -> str:
        """Map a JavaScript/Go SDK module name onto the botocore model name."""
        key = sdk_name.lower()
        return self.smithy_botocore_service_name_mapping.get(key, key)

    def rename_service_operation_action_map(self, service: str) -> str:
        return self.rename_services_operation_action_map.get(service, service)

    def rename_service_service_reference(self, service: str) -> str:
        return self.rename_services_service_reference.get(service, service)

    def rename_operation(self, service: str, operation: str) -> OperationRename:
        renamed = self.rename_operations.get(f"{service}:{operation}")
        if renamed is None:
            return OperationRename(service=service, operation=operation)
        logger.debug("Renamed %s:%s to %s:%s", service, operation, renamed.service, renamed.operation)
        return renamed

    def resource_override(self, service: str, resource_type: str) -> Optional[str]:
        return self.resource_overrides.get(service, {}).get(resource_type)


def load_service_configuration_file(path: Path) -> ServiceConfiguration:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not load service configuration: {e}", path=str(path)) from e
    return ServiceConfiguration.model_validate(data)


_lock = threading.Lock()
_shared: Optional[ServiceConfiguration] = None


def get_service_configuration() -> ServiceConfiguration:
    """Return the process-wide configuration, loading it on first use."""
    global _shared
    if _shared is None:
        with _lock:
            if _shared is None:
                _shared = load_service_configuration_file(CONFIG_PATH)
    return _shared
