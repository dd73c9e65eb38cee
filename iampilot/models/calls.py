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

"""Pydantic models for extracted SDK call sites."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class Language(str, Enum):
    """Source languages the extraction engine understands."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    GO = "go"

    @property
    def sdk_type(self) -> "SdkType":
        if self is Language.PYTHON:
            return SdkType.BOTO3
        if self is Language.GO:
            return SdkType.GO
        return SdkType.JAVASCRIPT


class SdkType(str, Enum):
    """SDK surface a call was written against; drives method-name canonicalization."""

    BOTO3 = "Boto3"
    JAVASCRIPT = "JavaScript"
    GO = "Go"
    OTHER = "Other"


class ParameterValue(BaseModel):
    """An argument value: either a literal or the raw text of an expression.

    Only resolved values are ever substituted into ARNs.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["resolved", "unresolved"]
    value: str

    @classmethod
    def resolved(cls, value: str) -> ParameterValue:
        return cls(kind="resolved", value=value)

    @classmethod
    def unresolved(cls, text: str) -> ParameterValue:
        return cls(kind="unresolved", value=text)

    @property
    def is_resolved(self) -> bool:
        return self.kind == "resolved"


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int

    def __str__(self) -> str:
        return f"{self.file}:{self.start_line}:{self.start_col}"


class SdkMethodCall(BaseModel):
    """A single SDK method invocation found in source code.

    ``possible_services`` lists candidate services when the binding is
    ambiguous; an empty list means "look the method up in every service".
    """

    model_config = ConfigDict(frozen=True)

    name: str
    possible_services: list[str] = Field(default_factory=list)
    arguments: dict[str, ParameterValue] = Field(default_factory=dict)
    location: Optional[Location] = None
    metadata: Optional[dict[str, Any]] = None

    def resolved_arguments(self) -> dict[str, str]:
        return {k: v.value for k, v in self.arguments.items() if v.is_resolved}


class SourceFile(BaseModel):
    path: str
    language: Language


class ExtractionMetadata(BaseModel):
    source_files: list[SourceFile] = Field(default_factory=list)


class ExtractedMethods(BaseModel):
    methods: list[SdkMethodCall] = Field(default_factory=list)
    metadata: ExtractionMetadata = Field(default_factory=ExtractionMetadata)

    @property
    def sdk_type(self) -> SdkType:
        # Every file in a run shares one language.
        if not self.metadata.source_files:
            return SdkType.OTHER
        return self.metadata.source_files[0].language.sdk_type
