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

"""Extraction engine: turns same-language source files into canonical SDK call records.

Each supported language is one extractor function with the same signature;
the engine picks it from a closed table keyed by Language.
"""

from __future__ import annotations

import difflib
import logging
from pathlib import Path
from typing import Optional, Protocol

from iampilot.catalog.service_catalog import ServiceCatalog
from iampilot.catalog.service_configuration import ServiceConfiguration, get_service_configuration
from iampilot.errors import (
    InvalidServiceHintsError,
    UnsupportedFileLanguageError,
    UnsupportedLanguageError,
    ValidationError,
)
from iampilot.extraction.discovery import expand_source_paths
from iampilot.extraction.go_extractor import extract_go_calls
from iampilot.extraction.javascript_extractor import extract_javascript_calls
from iampilot.extraction.python_extractor import extract_python_calls
from iampilot.models.calls import (
    ExtractedMethods,
    ExtractionMetadata,
    Language,
    SdkMethodCall,
    SourceFile,
)

logger = logging.getLogger(__name__)

LANGUAGE_ALIASES = {
    "python": Language.PYTHON,
    "py": Language.PYTHON,
    "javascript": Language.JAVASCRIPT,
    "js": Language.JAVASCRIPT,
    "typescript": Language.TYPESCRIPT,
    "ts": Language.TYPESCRIPT,
    "go": Language.GO,
    "golang": Language.GO,
}

LANGUAGE_EXTENSIONS = {
    Language.PYTHON: {".py"},
    Language.JAVASCRIPT: {".js", ".mjs", ".cjs", ".jsx"},
    Language.TYPESCRIPT: {".ts", ".tsx", ".mts", ".cts"},
    Language.GO: {".go"},
}


class LanguageExtractor(Protocol):
    def __call__(self, source: str, path: str, service_hints: list[str]) -> list[SdkMethodCall]: ...


def _python(source: str, path: str, service_hints: list[str]) -> list[SdkMethodCall]:
    return extract_python_calls(source, path, service_hints)


def _javascript(source: str, path: str, service_hints: list[str]) -> list[SdkMethodCall]:
    return extract_javascript_calls(source, path)


def _go(source: str, path: str, service_hints: list[str]) -> list[SdkMethodCall]:
    return extract_go_calls(source, path)


EXTRACTORS: dict[Language, LanguageExtractor] = {
    Language.PYTHON: _python,
    Language.JAVASCRIPT: _javascript,
    Language.TYPESCRIPT: _javascript,
    Language.GO: _go,
}


def resolve_language(name: Optional[str]) -> Optional[Language]:
    if name is None:
        return None
    language = LANGUAGE_ALIASES.get(name.strip().lower())
    if language is None:
        raise UnsupportedLanguageError(name)
    return language


def language_for_path(path: Path) -> Language:
    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if path.suffix.lower() in extensions:
            return language
    raise UnsupportedFileLanguageError(str(path), path.suffix)


class ExtractionEngine:
    """Runs the per-language extractors over a set of files.

    The catalog is consulted only to validate service hints.
    """

    def __init__(
        self,
        catalog: Optional[ServiceCatalog] = None,
        configuration: Optional[ServiceConfiguration] = None,
    ) -> None:
        self.catalog = catalog
        self.configuration = configuration or get_service_configuration()

    def validate_service_hints(self, hints: Optional[list[str]]) -> list[str]:
        """Normalize hints to catalog service names; unknown hints raise with suggestions."""
        if not hints:
            return []
        normalized = [self.configuration.botocore_service_name(h.strip()) for h in hints if h.strip()]
        if self.catalog is None:
            return list(dict.fromkeys(normalized))
        known = self.catalog.service_names()
        invalid = [h for h in normalized if h not in known]
        if invalid:
            suggestions = {h: difflib.get_close_matches(h, known, n=3, cutoff=0.6) for h in invalid}
            raise InvalidServiceHintsError(invalid, suggestions)
        return list(dict.fromkeys(normalized))

    def _apply_service_hints(self, call: SdkMethodCall, hints: list[str]) -> SdkMethodCall:
        if not hints:
            return call
        if not call.possible_services:
            return call.model_copy(update={"possible_services": list(hints)})
        if len(call.possible_services) > 1:
            narrowed = [
                s for s in call.possible_services
                if self.configuration.botocore_service_name(s) in hints
            ]
            if narrowed:
                return call.model_copy(update={"possible_services": narrowed})
        return call

    def extract_source(
        self,
        source: str,
        path: str,
        language: Language,
        service_hints: Optional[list[str]] = None,
    ) -> list[SdkMethodCall]:
        hints = list(service_hints or [])
        calls = EXTRACTORS[language](source, path, hints)
        return [self._apply_service_hints(c, hints) for c in calls]

    def _file_languages(self, files: list[Path], declared: Optional[Language]) -> dict[Path, Language]:
        if declared is not None:
            return {f: declared for f in files}
        languages = {f: language_for_path(f) for f in files}
        sdk_types = {lang.sdk_type for lang in languages.values()}
        if len(sdk_types) > 1:
            found = sorted({lang.value for lang in languages.values()})
            raise ValidationError(
                f"All source files must share one language, found: {', '.join(found)}"
            )
        return languages

    def extract(
        self,
        paths: list[Path],
        language: Optional[str] = None,
        service_hints: Optional[list[str]] = None,
    ) -> ExtractedMethods:
        hints = self.validate_service_hints(service_hints)
        declared = resolve_language(language)

        if declared is not None:
            extensions = LANGUAGE_EXTENSIONS[declared]
            if declared in (Language.JAVASCRIPT, Language.TYPESCRIPT):
                extensions = LANGUAGE_EXTENSIONS[Language.JAVASCRIPT] | LANGUAGE_EXTENSIONS[Language.TYPESCRIPT]
        else:
            extensions = set().union(*LANGUAGE_EXTENSIONS.values())
        files = expand_source_paths(paths, extensions)
        if not files:
            raise ValidationError("No source files to analyze")
        languages = self._file_languages(files, declared)

        metadata = ExtractionMetadata()
        methods: list[SdkMethodCall] = []
        for file_path in files:
            lang = languages[file_path]
            try:
                source = file_path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                raise ValidationError(f"Could not read source file: {e}", path=str(file_path)) from e
            metadata.source_files.append(SourceFile(path=str(file_path), language=lang))
            # A file that fails to parse aborts the run.
            calls = self.extract_source(source, str(file_path), lang, hints)
            logger.debug("%s: %d SDK calls", file_path, len(calls))
            methods.extend(calls)

        logger.info("Extracted %d SDK calls from %d files", len(methods), len(files))
        return ExtractedMethods(methods=methods, metadata=metadata)
