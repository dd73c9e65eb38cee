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

"""Terraform state context: ARNs of resources managed in a Terraform directory.

Runs ``terraform show -json`` in the directory and walks
``values.root_module.resources[].values.arn`` (child modules included).
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Any

from iampilot.errors import TerraformStateCommandError, TerraformStateParseError
from iampilot.models.context import Arn, TerraformStateContext

logger = logging.getLogger(__name__)

TERRAFORM_SHOW = ["terraform", "show", "-json"]


def run_terraform_show(directory: Path, timeout: int = 120) -> str:
    command = " ".join(TERRAFORM_SHOW)
    if shutil.which(TERRAFORM_SHOW[0]) is None:
        raise TerraformStateCommandError(command, "terraform executable not found on PATH")
    logger.info("Reading terraform state from %s", directory)
    try:
        result = subprocess.run(
            TERRAFORM_SHOW,
            cwd=str(directory),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise TerraformStateCommandError(command, f"timed out after {timeout}s") from e
    except OSError as e:
        raise TerraformStateCommandError(command, str(e)) from e
    if result.returncode != 0:
        raise TerraformStateCommandError(command, result.stderr)
    return result.stdout


def _module_resources(module: dict[str, Any]) -> list[dict[str, Any]]:
    resources = [r for r in module.get("resources", []) if isinstance(r, dict)]
    for child in module.get("child_modules", []) or []:
        if isinstance(child, dict):
            resources.extend(_module_resources(child))
    return resources


def parse_terraform_state(output: str) -> TerraformStateContext:
    try:
        state = json.loads(output)
    except json.JSONDecodeError as e:
        raise TerraformStateParseError(f"Terraform show output is not JSON: {e}", output) from e
    if not isinstance(state, dict):
        raise TerraformStateParseError("Terraform show object is not a map", output)
    values = state.get("values")
    if not isinstance(values, dict):
        raise TerraformStateParseError("Terraform show object does not have values field", output)
    root_module = values.get("root_module")
    if not isinstance(root_module, dict):
        raise TerraformStateParseError("Terraform show object does not have values.root_module field", output)
    if not isinstance(root_module.get("resources"), list):
        raise TerraformStateParseError(
            "Terraform show object does not have values.root_module.resources field", output
        )

    resource_arns: dict[str, list[str]] = {}
    for resource in _module_resources(root_module):
        arn_value = (resource.get("values") or {}).get("arn")
        if not isinstance(arn_value, str):
            continue
        arn = Arn.parse(arn_value)
        if arn is None:
            logger.debug("Ignoring malformed ARN %s in %s", arn_value, resource.get("address"))
            continue
        resource_arns.setdefault(arn.key, []).append(arn.arn)
    logger.info("Terraform state: %d ARNs", sum(len(v) for v in resource_arns.values()))
    return TerraformStateContext(resource_arns=resource_arns)


def fetch_terraform_state(directory: Path, timeout: int = 120) -> TerraformStateContext:
    return parse_terraform_state(run_terraform_show(directory, timeout))
