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

"""Go SDK call extraction (aws-sdk-go-v2 and aws-sdk-go).

Lexical like the JavaScript extractor: imports of ``.../service/<name>``
packages, ``<pkg>.NewFromConfig`` / ``<pkg>.New`` clients, calls on those
clients, any call taking ``&<pkg>.<Op>Input{...}``, and
``<pkg>.New<Op>Paginator`` helpers.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from iampilot.errors import MethodExtractionError
from iampilot.extraction.argument_extractor import (
    LexError,
    LineIndex,
    classify_value,
    find_closing,
    find_property_separator,
    parse_arguments,
    split_top_level,
)
from iampilot.extraction.javascript_extractor import check_balanced, prepare_source
from iampilot.models.calls import Location, ParameterValue, SdkMethodCall

logger = logging.getLogger(__name__)

_SERVICE_PATH = re.compile(r"^github\.com/aws/aws-sdk-go(?:-v2)?/service/(?P<service>[\w-]+)$")
_IMPORT_BLOCK = re.compile(r"\bimport\s*\((?P<body>[^)]*)\)")
_IMPORT_SINGLE = re.compile(r"""\bimport\s+(?:(?P<alias>[\w.]+)\s+)?"(?P<path>[^"]+)\"""")
_IMPORT_LINE = re.compile(r"""^\s*(?:(?P<alias>[\w.]+)\s+)?"(?P<path>[^"]+)\"""", re.M)
_CLIENT_ASSIGN = re.compile(
    r"""(?<![\w.])(?:var\s+)?(?P<target>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)\s*(?::=|=)\s*(?P<pkg>[A-Za-z_]\w*)\.(?:NewFromConfig|New)\s*\("""
)
_CLIENT_FIELD = re.compile(r"""(?<![\w.])(?P<field>[A-Za-z_]\w*)\s*:\s*(?P<pkg>[A-Za-z_]\w*)\.(?:NewFromConfig|New)\s*\(""")
_METHOD_CALL = re.compile(r"""(?<![\w.])(?P<recv>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)\.(?P<method>[A-Z]\w*)\s*\(""")
_INPUT_LITERAL = re.compile(r"""&?\s*(?P<pkg>[A-Za-z_]\w*)\.(?P<op>\w+)Input\s*\{""")
_PAGINATOR = re.compile(r"""^New(?P<op>\w+)Paginator$""")
_HELPER_CALL = re.compile(r"""^[A-Za-z_]\w*\.(?:String|Int|Int32|Int64|Bool|Float32|Float64|Time|Duration)\((?P<inner>.*)\)$""", re.S)


def _classify_go_value(text: str) -> ParameterValue:
    value = text.strip()
    helper = _HELPER_CALL.match(value)
    if helper:
        inner = classify_value(helper.group("inner"))
        return inner if inner.is_resolved else ParameterValue.unresolved(value)
    if value == "nil":
        return ParameterValue.resolved("null")
    return classify_value(value)


def _parse_struct_literal(body: str) -> dict[str, ParameterValue]:
    params: dict[str, ParameterValue] = {}
    for field in split_top_level(body):
        sep = find_property_separator(field)
        if sep is None:
            continue
        key = field[:sep].strip()
        if re.match(r"^[A-Za-z_]\w*$", key):
            params[key] = _classify_go_value(field[sep + 1 :])
    return params


class GoExtractor:
    def __init__(self, source: str, path: str) -> None:
        self.path = path
        try:
            self.code, self.masked = prepare_source(source, regex_literals=False)
            check_balanced(self.masked)
        except LexError as e:
            line, _ = LineIndex(source).position(e.offset)
            raise MethodExtractionError(path, str(e), line=line) from e
        self._lines = LineIndex(self.code)
        # package alias -> SDK service module name
        self.packages: dict[str, str] = {}
        self.clients: dict[str, str] = {}
        self.client_fields: dict[str, str] = {}
        self._calls: dict[int, SdkMethodCall] = {}

    def _add_import(self, alias: Optional[str], path: str) -> None:
        m = _SERVICE_PATH.match(path)
        if not m or alias in ("_", "."):
            return
        service = m.group("service")
        self.packages[alias or service] = service

    def _collect_imports(self) -> None:
        for block in _IMPORT_BLOCK.finditer(self.code):
            for line in _IMPORT_LINE.finditer(block.group("body")):
                self._add_import(line.group("alias"), line.group("path"))
        for single in _IMPORT_SINGLE.finditer(self.code):
            self._add_import(single.group("alias"), single.group("path"))

    def _collect_clients(self) -> None:
        for m in _CLIENT_ASSIGN.finditer(self.masked):
            service = self.packages.get(m.group("pkg"))
            if service:
                self.clients[m.group("target")] = service
        for m in _CLIENT_FIELD.finditer(self.masked):
            service = self.packages.get(m.group("pkg"))
            if service:
                self.client_fields[m.group("field")] = service

    def _receiver_service(self, recv: str) -> Optional[str]:
        if recv in self.clients:
            return self.clients[recv]
        return self.client_fields.get(recv.rsplit(".", 1)[-1])

    def _input_literal(self, arg: str) -> tuple[Optional[str], dict[str, ParameterValue]]:
        m = _INPUT_LITERAL.match(arg)
        if not m or m.group("pkg") not in self.packages:
            return None, {}
        brace = m.end() - 1
        close = find_closing(arg, brace)
        return self.packages[m.group("pkg")], _parse_struct_literal(arg[brace + 1 : close])

    def _emit(self, start: int, end: int, name: str, service: str, arguments: dict[str, ParameterValue]) -> None:
        if start in self._calls:
            return
        start_line, start_col = self._lines.position(start)
        end_line, end_col = self._lines.position(end)
        self._calls[start] = SdkMethodCall(
            name=name,
            possible_services=[service],
            arguments=arguments,
            location=Location(
                file=self.path,
                start_line=start_line,
                start_col=start_col,
                end_line=end_line,
                end_col=end_col,
            ),
        )

    def _collect_calls(self) -> None:
        for m in _METHOD_CALL.finditer(self.masked):
            recv, method = m.group("recv"), m.group("method")
            open_paren = m.end() - 1
            close = find_closing(self.code, open_paren)
            args = parse_arguments(self.code[open_paren + 1 : close])

            if recv in self.packages:
                paginator = _PAGINATOR.match(method)
                if paginator and len(args) > 1:
                    _, arguments = self._input_literal(args[1])
                    self._emit(m.start(), close + 1, paginator.group("op"), self.packages[recv], arguments)
                continue

            service = self._receiver_service(recv)
            arguments: dict[str, ParameterValue] = {}
            for arg in args:
                input_service, parsed = self._input_literal(arg)
                if input_service is not None:
                    service = service or input_service
                    arguments = parsed
                    break
            if service is None:
                continue
            if method.endswith("WithContext"):
                method = method[: -len("WithContext")]
            self._emit(m.start(), close + 1, method, service, arguments)

    def extract(self) -> list[SdkMethodCall]:
        self._collect_imports()
        if not self.packages:
            return []
        try:
            self._collect_clients()
            self._collect_calls()
        except LexError as e:
            line, _ = self._lines.position(e.offset)
            raise MethodExtractionError(self.path, str(e), line=line) from e
        logger.debug("%s: %d SDK calls", self.path, len(self._calls))
        return [self._calls[k] for k in sorted(self._calls)]


def extract_go_calls(source: str, path: str) -> list[SdkMethodCall]:
    """Extract SDK calls from Go source text."""
    return GoExtractor(source, path).extract()
