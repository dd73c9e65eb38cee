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

"""Service Catalog: the AWS API model (operations and input shapes) per service.

Two sources provide the same simplified view:
- botocore's bundled ``service-2`` models (default; ships with the SDK)
- a directory mirror laid out as ``<service>/<YYYY-MM-DD>/service-2.json``

Only ``metadata.apiVersion``, ``metadata.serviceId``, ``operations`` and
``shapes`` are kept. When several API versions exist the lexicographically
latest wins.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

from botocore import xform_name
from botocore.exceptions import DataNotFoundError, UnknownServiceError
from botocore.loaders import create_loader
from pydantic import BaseModel, Field

from iampilot.errors import ServiceReferenceParseError
from iampilot.models.calls import SdkType

logger = logging.getLogger(__name__)

_VERSION_DIR = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_GO_SUFFIXES = ("WithContext", "Request", "Pages")


class ServiceModel(BaseModel):
    name: str
    api_version: str = ""
    service_id: str = ""
    # operation name -> input shape name (None when the operation takes no input)
    operations: dict[str, Optional[str]] = Field(default_factory=dict)
    shapes: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @classmethod
    def from_model(cls, name: str, raw: dict[str, Any]) -> ServiceModel:
        metadata = raw.get("metadata") or {}
        operations: dict[str, Optional[str]] = {}
        for op_name, op in (raw.get("operations") or {}).items():
            input_ref = (op or {}).get("input") or {}
            operations[op_name] = input_ref.get("shape")
        shapes = {
            shape_name: {k: v for k, v in shape.items() if k in ("type", "members", "required")}
            for shape_name, shape in (raw.get("shapes") or {}).items()
        }
        return cls(
            name=name,
            api_version=metadata.get("apiVersion", ""),
            service_id=metadata.get("serviceId", ""),
            operations=operations,
            shapes=shapes,
        )


class CatalogSource(Protocol):
    def service_names(self) -> list[str]: ...

    def load(self, service: str) -> Optional[dict[str, Any]]: ...


class BotocoreCatalogSource:
    """Reads the JSON models bundled with botocore."""

    def __init__(self) -> None:
        self._loader = create_loader()

    def service_names(self) -> list[str]:
        return sorted(self._loader.list_available_services("service-2"))

    def load(self, service: str) -> Optional[dict[str, Any]]:
        try:
            version = self._loader.determine_latest_version(service, "service-2")
            return self._loader.load_service_model(service, "service-2", version)
        except (DataNotFoundError, UnknownServiceError):
            return None


class DirectoryCatalogSource:
    """Reads a ``<service>/<YYYY-MM-DD>/service-2.json`` mirror."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def service_names(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(p.name for p in self.root.iterdir() if p.is_dir() and self._latest(p))

    @staticmethod
    def _latest(service_dir: Path) -> Optional[Path]:
        versions = sorted(
            p for p in service_dir.iterdir() if p.is_dir() and _VERSION_DIR.match(p.name)
        )
        return versions[-1] if versions else None

    def load(self, service: str) -> Optional[dict[str, Any]]:
        service_dir = self.root / service
        if not service_dir.is_dir():
            return None
        latest = self._latest(service_dir)
        if latest is None:
            return None
        model_path = latest / "service-2.json"
        try:
            return json.loads(model_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise ServiceReferenceParseError(service, str(e), source=str(model_path)) from e


class ServiceCatalog:
    """Read-only, lazily populated view over a catalog source.

    Safe to share between threads: each service model is loaded at most once.
    """

    def __init__(self, source: Optional[CatalogSource] = None) -> None:
        self._source = source or BotocoreCatalogSource()
        self._lock = threading.Lock()
        self._models: dict[str, Optional[ServiceModel]] = {}
        self._names: Optional[list[str]] = None
        self._operation_index: Optional[dict[str, list[str]]] = None

    def service_names(self) -> list[str]:
        if self._names is None:
            with self._lock:
                if self._names is None:
                    self._names = self._source.service_names()
        return list(self._names)

    def get(self, service: str) -> Optional[ServiceModel]:
        if service in self._models:
            return self._models[service]
        with self._lock:
            if service not in self._models:
                raw = self._source.load(service)
                self._models[service] = ServiceModel.from_model(service, raw) if raw else None
        return self._models[service]

    def resolve_operation(self, service: str, method_name: str, sdk_type: SdkType) -> Optional[str]:
        """Map an SDK method name onto the catalog's PascalCase operation name."""
        model = self.get(service)
        if model is None:
            return None
        return _match_operation(model.operations, method_name, sdk_type)

    def services_for_operation(self, method_name: str, sdk_type: SdkType) -> list[str]:
        """All services defining an operation the method name canonicalizes to."""
        if self._operation_index is None:
            names = self.service_names()
            logger.info("Indexing operations across %d catalog services", len(names))
            index: dict[str, list[str]] = {}
            for name in names:
                model = self.get(name)
                if model is None:
                    continue
                for op in model.operations:
                    index.setdefault(op.lower(), []).append(name)
                    index.setdefault(xform_name(op), []).append(name)
            self._operation_index = index
        key = method_name if sdk_type is SdkType.BOTO3 else method_name.lower()
        return list(dict.fromkeys(self._operation_index.get(key, [])))


def _match_operation(operations: dict[str, Optional[str]], method_name: str, sdk_type: SdkType) -> Optional[str]:
    if method_name in operations:
        return method_name
    if sdk_type is SdkType.BOTO3:
        for op in operations:
            if xform_name(op) == method_name:
                return op
        return None
    lowered = {op.lower(): op for op in operations}
    if method_name.lower() in lowered:
        return lowered[method_name.lower()]
    if sdk_type is SdkType.GO:
        for suffix in _GO_SUFFIXES:
            if method_name.endswith(suffix):
                base = method_name[: -len(suffix)].lower()
                if base in lowered:
                    return lowered[base]
    return None


_shared_lock = threading.Lock()
_shared: dict[Optional[Path], ServiceCatalog] = {}


def get_service_catalog(catalog_dir: Optional[Path] = None) -> ServiceCatalog:
    """Return the shared catalog for ``catalog_dir`` (botocore when None)."""
    if catalog_dir not in _shared:
        with _shared_lock:
            if catalog_dir not in _shared:
                source = DirectoryCatalogSource(catalog_dir) if catalog_dir else BotocoreCatalogSource()
                _shared[catalog_dir] = ServiceCatalog(source)
    return _shared[catalog_dir]
