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

"""Service Reference: which IAM actions and resources each operation needs.

Documents follow the format AWS publishes at
https://servicereference.us-east-1.amazonaws.com/ (one JSON document per
service, listed by an index of ``{"service", "url"}`` entries). They are read
from a local mirror directory or fetched with httpx and cached on disk.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from iampilot.errors import (
    EnrichmentError,
    OperationActionMapParseError,
    ServiceReferenceNotFoundError,
    ServiceReferenceParseError,
)

logger = logging.getLogger(__name__)


class AuthorizedAction(BaseModel):
    service: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.service}:{self.name}"


class SdkMethod(BaseModel):
    name: str
    method: str
    package: str


class ReferenceOperation(BaseModel):
    name: str
    authorized_actions: list[AuthorizedAction] = Field(default_factory=list)
    sdk: list[SdkMethod] = Field(default_factory=list)


class ReferenceAction(BaseModel):
    name: str
    resources: list[str] = Field(default_factory=list)
    condition_keys: list[str] = Field(default_factory=list)


class ServiceReference(BaseModel):
    """One service's actions, resource ARN formats and operation mapping."""

    name: str
    actions: dict[str, ReferenceAction] = Field(default_factory=dict)
    resources: dict[str, list[str]] = Field(default_factory=dict)
    operations: dict[str, ReferenceOperation] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, service: str, raw: Any) -> ServiceReference:
        if not isinstance(raw, dict):
            raise ServiceReferenceParseError(service, "document root is not an object")
        try:
            actions = {
                a["Name"]: ReferenceAction(
                    name=a["Name"],
                    resources=[r["Name"] for r in a.get("Resources", [])],
                    condition_keys=list(a.get("ActionConditionKeys", [])),
                )
                for a in raw.get("Actions", [])
            }
            resources = {r["Name"]: list(r.get("ARNFormats", [])) for r in raw.get("Resources", [])}
        except (KeyError, TypeError) as e:
            raise ServiceReferenceParseError(service, f"bad action or resource entry: {e}") from e
        try:
            operations = {
                op["Name"]: ReferenceOperation(
                    name=op["Name"],
                    authorized_actions=[
                        AuthorizedAction(service=a["Service"], name=a["Name"])
                        for a in op.get("AuthorizedActions", [])
                    ],
                    sdk=[
                        SdkMethod(name=s["Name"], method=s["Method"], package=s["Package"])
                        for s in op.get("SDK", [])
                    ],
                )
                for op in raw.get("Operations", [])
            }
        except (KeyError, TypeError, PydanticValidationError) as e:
            raise OperationActionMapParseError(service, str(e)) from e
        return cls(name=raw.get("Name", service), actions=actions, resources=resources, operations=operations)

    def authorized_actions(self, operation: str) -> Optional[list[AuthorizedAction]]:
        op = self.operations.get(operation)
        if op is None or not op.authorized_actions:
            return None
        return op.authorized_actions

    def operation_for_sdk_method(self, method: str, package: str) -> Optional[str]:
        for op in self.operations.values():
            for sdk in op.sdk:
                if sdk.package == package and sdk.method == method:
                    return op.name
        return None


class ServiceReferenceLoader(Protocol):
    def service_names(self) -> list[str]: ...

    def load(self, service: str) -> ServiceReference: ...


def _read_json(service: str, path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ServiceReferenceParseError(service, str(e), source=str(path)) from e


class LocalServiceReferenceLoader:
    """Loads ``<service>.json`` documents from a mirror directory."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self._lock = threading.Lock()
        self._cache: dict[str, ServiceReference] = {}

    def service_names(self) -> list[str]:
        return sorted(p.stem for p in self.root.glob("*.json"))

    def load(self, service: str) -> ServiceReference:
        if service in self._cache:
            return self._cache[service]
        path = self.root / f"{service}.json"
        if not path.is_file():
            raise ServiceReferenceNotFoundError(service)
        reference = ServiceReference.from_document(service, _read_json(service, path))
        with self._lock:
            self._cache.setdefault(service, reference)
        return self._cache[service]


class RemoteServiceReferenceLoader:
    """Fetches documents over HTTPS, caching them under ``cache_dir``."""

    def __init__(
        self,
        base_url: str,
        cache_dir: Optional[Path] = None,
        disable_cache: bool = False,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url
        self.cache_dir = None if disable_cache or cache_dir is None else cache_dir / "service-reference"
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._lock = threading.Lock()
        self._index: Optional[dict[str, str]] = None
        self._cache: dict[str, ServiceReference] = {}

    def _get_json(self, url: str) -> Any:
        try:
            response = self._client.get(url)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise EnrichmentError(f"Failed to fetch service reference data: {e}", url=url) from e
        except json.JSONDecodeError as e:
            raise EnrichmentError(f"Service reference endpoint returned invalid JSON: {e}", url=url) from e

    def _service_index(self) -> dict[str, str]:
        if self._index is None:
            with self._lock:
                if self._index is None:
                    entries = self._get_json(self.base_url)
                    if not isinstance(entries, list):
                        raise EnrichmentError("Service reference index is not a list", url=self.base_url)
                    self._index = {e["service"]: e["url"] for e in entries if "service" in e and "url" in e}
                    logger.debug("Service reference index lists %d services", len(self._index))
        return self._index

    def service_names(self) -> list[str]:
        return sorted(self._service_index())

    def load(self, service: str) -> ServiceReference:
        if service in self._cache:
            return self._cache[service]
        raw = self._read_cached(service)
        if raw is None:
            url = self._service_index().get(service)
            if url is None:
                raise ServiceReferenceNotFoundError(service)
            raw = self._get_json(url)
            self._write_cached(service, raw)
        reference = ServiceReference.from_document(service, raw)
        with self._lock:
            self._cache.setdefault(service, reference)
        return self._cache[service]

    def _read_cached(self, service: str) -> Any:
        if self.cache_dir is None:
            return None
        path = self.cache_dir / f"{service}.json"
        if not path.is_file():
            return None
        logger.debug("Service reference cache hit for %s", service)
        return _read_json(service, path)

    def _write_cached(self, service: str, raw: Any) -> None:
        if self.cache_dir is None:
            return
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            (self.cache_dir / f"{service}.json").write_text(json.dumps(raw), encoding="utf-8")
        except OSError as e:
            logger.warning("Could not write service reference cache for %s: %s", service, e)


_shared_lock = threading.Lock()
_shared: dict[tuple, ServiceReferenceLoader] = {}


def get_service_reference_loader(
    mirror_dir: Optional[Path] = None,
    base_url: Optional[str] = None,
    cache_dir: Optional[Path] = None,
    disable_cache: bool = False,
    timeout: float = 30.0,
) -> ServiceReferenceLoader:
    """Return a shared loader: the local mirror when given, otherwise the remote endpoint."""
    key = (mirror_dir, base_url, cache_dir, disable_cache)
    if key not in _shared:
        with _shared_lock:
            if key not in _shared:
                if mirror_dir is not None:
                    _shared[key] = LocalServiceReferenceLoader(mirror_dir)
                elif base_url:
                    _shared[key] = RemoteServiceReferenceLoader(base_url, cache_dir, disable_cache, timeout)
                else:
                    raise EnrichmentError("No service reference source configured")
    return _shared[key]
