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

"""User configuration: ~/.iampilot/config.yaml with IAMPILOT_* environment overrides.

Precedence, lowest first: built-in defaults, config file, environment,
explicit overrides passed by the caller (CLI flags).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, ValidationError as PydanticValidationError

from iampilot.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".iampilot"
CONFIG_FILE = CONFIG_DIR / "config.yaml"
ENV_PREFIX = "IAMPILOT_"

DEFAULT_SERVICE_REFERENCE_URL = "https://servicereference.us-east-1.amazonaws.com/"


class Settings(BaseModel):
    partition: str = "aws"
    region: str = "us-east-1"
    account: str = "*"
    service_reference_url: str = DEFAULT_SERVICE_REFERENCE_URL
    # Local mirror of service reference documents; used instead of the network when set
    service_reference_dir: Optional[Path] = None
    # Simplified catalog mirror; botocore's bundled models are used when unset
    catalog_dir: Optional[Path] = None
    cache_dir: Path = CONFIG_DIR / "cache"
    disable_cache: bool = False
    http_timeout: float = 30.0
    terraform_timeout: int = 120


def load_config(path: Path = CONFIG_FILE) -> dict:
    """Load the raw config mapping. A missing file yields an empty dict."""
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Could not read config: {e}", path=str(path)) from e
    if not isinstance(data, dict):
        raise ConfigurationError("Config root must be a mapping", path=str(path))
    return data


def save_config(config: dict, path: Path = CONFIG_FILE) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config, f, default_flow_style=False, sort_keys=False)
    return path


def _env_overrides() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field in Settings.model_fields:
        raw = os.environ.get(ENV_PREFIX + field.upper())
        if raw is not None and raw != "":
            values[field] = raw
    return values


def load_settings(path: Path = CONFIG_FILE, **overrides: Any) -> Settings:
    data = load_config(path)
    data.update(_env_overrides())
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        settings = Settings(**data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", path=str(path)) from e
    logger.debug("Loaded settings: %s", settings.model_dump())
    return settings
