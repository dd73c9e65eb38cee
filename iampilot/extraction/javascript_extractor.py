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

"""JavaScript/TypeScript SDK call extraction: lexical scanning, no JS parser.

Recognizes AWS SDK v3 (``@aws-sdk/client-*``, ``@aws-sdk/lib-dynamodb``) and
v2 (``aws-sdk``, ``aws-sdk/clients/*``) usage:
- ES imports and CommonJS require, including renamed bindings
- client construction (``new S3Client(...)``, ``new AWS.S3()``,
  ``DynamoDBDocumentClient.from(...)``)
- command objects (``new GetObjectCommand({...})``)
- method calls on aggregated / v2 clients (``s3.getObject({...})``)
- paginator helpers (``paginateListObjectsV2({client}, {...})``)

Comments, regex literal bodies and JSX text are blanked and string contents
masked before matching so that offsets, and therefore line/column positions,
are preserved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from iampilot.errors import MethodExtractionError
from iampilot.extraction.argument_extractor import (
    LexError,
    LineIndex,
    find_closing,
    parse_arguments,
    parse_object_literal,
    skip_string,
)
from iampilot.models.calls import Location, ParameterValue, SdkMethodCall

logger = logging.getLogger(__name__)


# ── Module and symbol tables ──

V3_CLIENT_PREFIX = "@aws-sdk/client-"
V3_DOCUMENT_MODULE = "@aws-sdk/lib-dynamodb"
V2_MODULE = "aws-sdk"
V2_CLIENTS_PREFIX = "aws-sdk/clients/"

# DynamoDB document client method / command -> DynamoDB operation
DOCUMENT_OPERATIONS = {
    "get": "GetItem",
    "put": "PutItem",
    "update": "UpdateItem",
    "delete": "DeleteItem",
    "query": "Query",
    "scan": "Scan",
    "batchGet": "BatchGetItem",
    "batchWrite": "BatchWriteItem",
    "transactGet": "TransactGetItems",
    "transactWrite": "TransactWriteItems",
    "executeStatement": "ExecuteStatement",
    "batchExecuteStatement": "BatchExecuteStatement",
    "executeTransaction": "ExecuteTransaction",
}

# Client methods that never correspond to a service operation
NON_OPERATION_METHODS = frozenset({
    "send",
    "destroy",
    "promise",
    "on",
    "then",
    "catch",
    "finally",
    "middlewareStack",
    "config",
    "makeRequest",
    "makeUnauthenticatedRequest",
    "createPresignedPost",
    "waitFor",
    "setupRequestListeners",
})

PRESIGN_METHODS = frozenset({"getSignedUrl", "getSignedUrlPromise"})

_NON_CLIENT_SUFFIXES = ("Command", "Input", "Output", "Exception", "Error", "Paginator", "Waiter")


# ── Patterns ──

_ES_IMPORT = re.compile(
    r"""\bimport\s+(?:type\s+)?(?P<clause>[\w$*{}\s,]+?)\s+from\s+(?P<q>['"])(?P<module>[^'"]+)(?P=q)"""
)
_REQUIRE = re.compile(
    r"""\b(?:const|let|var)\s+(?P<target>\{[^}]*\}|[A-Za-z_$][\w$]*)\s*=\s*require\s*\(\s*(?P<q>['"])(?P<module>[^'"]+)(?P=q)\s*\)"""
)
_CLIENT_ASSIGN = re.compile(
    r"""(?<![\w$.])(?P<target>(?:this\.)?[A-Za-z_$][\w$]*)\s*(?::\s*[\w$.<>]+\s*)?=\s*(?:await\s+)?"""
    r"""(?:new\s+(?P<ctor>[A-Za-z_$][\w$.]*)\s*\(|(?P<factory>[A-Za-z_$][\w$.]*)\s*\.\s*from\s*\()"""
)
_NEW_EXPR = re.compile(r"""\bnew\s+(?P<ctor>[A-Za-z_$][\w$.]*)\s*\(""")
_METHOD_CALL = re.compile(
    r"""(?<![\w$.])(?P<recv>(?:this\.)?[A-Za-z_$][\w$]*)\s*\.\s*(?P<method>[A-Za-z_$][\w$]*)\s*\("""
)
_FUNCTION_CALL = re.compile(r"""(?<![\w$.])(?P<fn>[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)?)\s*\(""")
_IMPORT_SPEC = re.compile(r"""^(?:type\s+)?(?P<original>[\w$]+)(?:\s+as\s+(?P<local>[\w$]+))?$""")
_REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")
JSX_SUFFIXES = (".jsx", ".tsx")


@dataclass
class SublibraryInfo:
    """One imported SDK module and the local names bound to it."""

    module: str
    service: Optional[str]
    name_mappings: dict[str, str] = field(default_factory=dict)
    namespaces: set[str] = field(default_factory=set)
    default: Optional[str] = None


@dataclass
class ClientInfo:
    variable: str
    service: str
    # "command": send()-only v3 client; "aggregated": methods are operations;
    # "document": DynamoDB document client methods
    kind: str
    module: str


def _module_service(module: str) -> Optional[str]:
    if module.startswith(V3_CLIENT_PREFIX):
        return module[len(V3_CLIENT_PREFIX):]
    if module == V3_DOCUMENT_MODULE:
        return "dynamodb"
    if module.startswith(V2_CLIENTS_PREFIX):
        return module[len(V2_CLIENTS_PREFIX):]
    return None


def _is_sdk_module(module: str) -> bool:
    return module == V2_MODULE or _module_service(module) is not None


# ── Lexing ──


def _regex_allowed(text: str, pos: int) -> bool:
    j = pos - 1
    while j >= 0 and text[j] in " \t\r\n":
        j -= 1
    if j < 0:
        return True
    if text[j] in _REGEX_PRECEDERS:
        return True
    word = re.search(r"([A-Za-z_$]+)$", text[: j + 1])
    return bool(word and word.group(1) in ("return", "typeof", "case", "in", "of"))


def _skip_regex(text: str, pos: int) -> int:
    i = pos + 1
    in_class = False
    while i < len(text):
        ch = text[i]
        if ch == "\n":
            return pos + 1
        if ch == "\\":
            i += 2
            continue
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            return i + 1
        i += 1
    return pos + 1


_JSX_NAME = re.compile(r"[A-Za-z_$][\w$.:-]*")


def _jsx_allowed(text: str, pos: int) -> bool:
    nxt = text[pos + 1 : pos + 2]
    return bool(nxt) and (nxt == ">" or nxt.isalpha() or nxt in "_$") and _regex_allowed(text, pos)


class _SourceMasker:
    """Single pass over JS/TS/Go source producing the ``code`` and ``masked`` views."""

    def __init__(self, source: str, regex_literals: bool, jsx: bool) -> None:
        self.source = source
        self.regex_literals = regex_literals
        self.jsx = jsx
        self.code = list(source)
        self.masked = list(source)

    def blank(self, start: int, end: int, masked_only: bool = False) -> None:
        bufs = (self.masked,) if masked_only else (self.code, self.masked)
        for buf in bufs:
            for k in range(start, end):
                if buf[k] != "\n":
                    buf[k] = " "

    def script(self, i: int, nested: bool = False) -> int:
        """Scan code from ``i``; when ``nested``, stop at the ``}`` closing an enclosing brace."""
        source = self.source
        n = len(source)
        start = i
        depth = 0
        while i < n:
            ch = source[i]
            if ch in "'\"`":
                end = skip_string(source, i)
                self.blank(i + 1, end - 1, masked_only=True)
                i = end
                continue
            if ch == "/" and i + 1 < n:
                nxt = source[i + 1]
                if nxt == "/":
                    end = source.find("\n", i)
                    end = n if end == -1 else end
                    self.blank(i, end)
                    i = end
                    continue
                if nxt == "*":
                    end = source.find("*/", i + 2)
                    if end == -1:
                        raise LexError("unterminated block comment", i)
                    self.blank(i, end + 2)
                    i = end + 2
                    continue
                if self.regex_literals and _regex_allowed(source, i):
                    end = _skip_regex(source, i)
                    self.blank(i + 1, end - 1)
                    i = end
                    continue
            if self.jsx and ch == "<" and _jsx_allowed(source, i):
                end = self.element(i)
                if end is not None:
                    i = end
                    continue
            if nested:
                if ch == "{":
                    depth += 1
                elif ch == "}":
                    if depth == 0:
                        return i
                    depth -= 1
            i += 1
        if nested:
            raise LexError("unclosed '{'", start - 1)
        return i

    def tag(self, i: int) -> Optional[tuple[int, bool, bool]]:
        """Parse the JSX tag at ``i``: ``(end, self_closing, closing)``, or None if it is not one."""
        source = self.source
        n = len(source)
        j = i + 1
        closing = source.startswith("/", j)
        if closing:
            j += 1
        m = _JSX_NAME.match(source, j)
        if m:
            j = m.end()
        elif source[j : j + 1] != ">":
            return None
        while j < n:
            ch = source[j]
            if ch == ">":
                return j + 1, False, closing
            if ch == "/" and source.startswith(">", j + 1):
                return j + 2, True, closing
            if ch == "{":
                j = self.script(j + 1, nested=True) + 1
            elif ch in "'\"":
                end = skip_string(source, j)
                self.blank(j + 1, end - 1, masked_only=True)
                j = end
            elif ch.isspace() or ch.isalnum() or ch in "_$-:.=":
                j += 1
            else:
                return None
        return None

    def element(self, start: int) -> Optional[int]:
        """Skip the JSX element at ``start``, blanking its text children."""
        opening = self.tag(start)
        if opening is None:
            return None
        i, self_closing, _ = opening
        if self_closing:
            return i
        source = self.source
        depth = 1
        text_start = i
        while i < len(source):
            ch = source[i]
            if ch == "{":
                self.blank(text_start, i)
                i = self.script(i + 1, nested=True) + 1
                text_start = i
                continue
            if ch == "<":
                self.blank(text_start, i)
                tag = self.tag(i)
                if tag is None:
                    raise LexError("malformed JSX tag", i)
                i, self_closing, closing = tag
                text_start = i
                if closing:
                    depth -= 1
                    if depth == 0:
                        return i
                elif not self_closing:
                    depth += 1
                continue
            i += 1
        raise LexError("unclosed JSX element", start)


def prepare_source(source: str, regex_literals: bool = True, jsx: bool = False) -> tuple[str, str]:
    """Return ``(code, masked)``: comments, regex literal bodies and JSX text
    blanked, and in ``masked`` string bodies blanked as well.

    Both strings have the same length and line structure as ``source``.
    """
    masker = _SourceMasker(source, regex_literals, jsx)
    masker.script(0)
    return "".join(masker.code), "".join(masker.masked)


def check_balanced(masked: str) -> None:
    """Raise LexError when brackets in (already string-masked) code do not balance."""
    pairs = {")": "(", "]": "[", "}": "{"}
    stack: list[tuple[str, int]] = []
    for i, ch in enumerate(masked):
        if ch in "([{":
            stack.append((ch, i))
        elif ch in pairs:
            if not stack or stack[-1][0] != pairs[ch]:
                raise LexError(f"unexpected '{ch}'", i)
            stack.pop()
    if stack:
        raise LexError(f"unclosed '{stack[-1][0]}'", stack[-1][1])


# ── Extractor ──


class JavaScriptExtractor:
    """Scans one JS/TS source file for SDK call sites."""

    def __init__(self, source: str, path: str) -> None:
        self.path = path
        self.source = source
        self.sublibraries: list[SublibraryInfo] = []
        self.clients: dict[str, ClientInfo] = {}
        self._calls: dict[int, SdkMethodCall] = {}
        try:
            self.code, self.masked = prepare_source(source, jsx=path.endswith(JSX_SUFFIXES))
            check_balanced(self.masked)
        except LexError as e:
            line, _ = LineIndex(source).position(e.offset)
            raise MethodExtractionError(path, str(e), line=line) from e
        self._lines = LineIndex(self.code)

    # ── imports ──

    def _sublibrary(self, module: str) -> SublibraryInfo:
        for info in self.sublibraries:
            if info.module == module:
                return info
        info = SublibraryInfo(module=module, service=_module_service(module))
        self.sublibraries.append(info)
        return info

    def _collect_imports(self) -> None:
        for m in _ES_IMPORT.finditer(self.code):
            module = m.group("module")
            if not _is_sdk_module(module):
                continue
            info = self._sublibrary(module)
            clause = m.group("clause").strip()
            brace = re.search(r"\{([^}]*)\}", clause)
            if brace:
                for spec in brace.group(1).split(","):
                    sm = _IMPORT_SPEC.match(spec.strip())
                    if sm:
                        info.name_mappings[sm.group("local") or sm.group("original")] = sm.group("original")
                clause = clause[: brace.start()] + clause[brace.end():]
            ns = re.search(r"\*\s*as\s+([\w$]+)", clause)
            if ns:
                info.namespaces.add(ns.group(1))
                clause = clause[: ns.start()] + clause[ns.end():]
            default = clause.strip().strip(",").strip()
            if default:
                self._bind_default(info, default)

        for m in _REQUIRE.finditer(self.code):
            module = m.group("module")
            if not _is_sdk_module(module):
                continue
            info = self._sublibrary(module)
            target = m.group("target")
            if target.startswith("{"):
                for spec in target[1:-1].split(","):
                    spec = spec.strip()
                    if not spec:
                        continue
                    original, _, local = spec.partition(":")
                    info.name_mappings[(local or original).strip()] = original.strip()
            else:
                self._bind_default(info, target)
        logger.debug("%s: SDK imports %s", self.path, [i.module for i in self.sublibraries])

    @staticmethod
    def _bind_default(info: SublibraryInfo, name: str) -> None:
        if info.module.startswith(V2_CLIENTS_PREFIX):
            info.default = name
        else:
            info.namespaces.add(name)

    def _resolve_symbol(self, expr: str) -> Optional[tuple[SublibraryInfo, str]]:
        """Map a local expression (``S3Client``, ``sdk.S3Client``, ``AWS.S3``) to its SDK symbol."""
        head, _, rest = expr.partition(".")
        for info in self.sublibraries:
            if not rest:
                if head in info.name_mappings:
                    return info, info.name_mappings[head]
                if head == info.default:
                    return info, head
            elif head in info.namespaces:
                return info, rest
        return None

    # ── clients ──

    @staticmethod
    def _classify_client(info: SublibraryInfo, original: str) -> Optional[tuple[str, str]]:
        if info.module == V3_DOCUMENT_MODULE:
            if original == "DynamoDBDocumentClient":
                return "dynamodb", "command"
            if original == "DynamoDBDocument":
                return "dynamodb", "document"
            return None
        if info.module.startswith(V3_CLIENT_PREFIX):
            if original.endswith("Client"):
                return info.service or "", "command"
            if original[:1].isupper() and not original.endswith(_NON_CLIENT_SUFFIXES):
                return info.service or "", "aggregated"
            return None
        if info.module.startswith(V2_CLIENTS_PREFIX):
            return info.service or "", "aggregated"
        if info.module == V2_MODULE:
            if original == "DynamoDB.DocumentClient":
                return "dynamodb", "document"
            if "." not in original and original[:1].isupper():
                return original.lower(), "aggregated"
        return None

    def _collect_clients(self) -> None:
        for m in _CLIENT_ASSIGN.finditer(self.masked):
            expr = m.group("ctor") or m.group("factory")
            resolved = self._resolve_symbol(expr)
            if resolved is None:
                continue
            info, original = resolved
            classified = self._classify_client(info, original)
            if classified is None:
                continue
            service, kind = classified
            target = m.group("target")
            self.clients[target] = ClientInfo(variable=target, service=service, kind=kind, module=info.module)
            logger.debug("%s: client %s -> %s (%s)", self.path, target, service, kind)

    # ── calls ──

    def _call_args(self, open_paren: int) -> tuple[list[str], int]:
        close = find_closing(self.code, open_paren)
        return parse_arguments(self.code[open_paren + 1 : close]), close

    @staticmethod
    def _object_arg(args: list[str], index: int) -> dict[str, ParameterValue]:
        if len(args) > index and args[index].startswith("{"):
            return parse_object_literal(args[index])
        return {}

    def _emit(self, start: int, end: int, name: str, service: str, arguments: dict[str, ParameterValue], **meta: str) -> None:
        if start in self._calls:
            return
        start_line, start_col = self._lines.position(start)
        end_line, end_col = self._lines.position(end)
        self._calls[start] = SdkMethodCall(
            name=name,
            possible_services=[service] if service else [],
            arguments=arguments,
            location=Location(
                file=self.path,
                start_line=start_line,
                start_col=start_col,
                end_line=end_line,
                end_col=end_col,
            ),
            metadata=meta or None,
        )

    def _collect_commands(self) -> None:
        for m in _NEW_EXPR.finditer(self.masked):
            resolved = self._resolve_symbol(m.group("ctor"))
            if resolved is None:
                continue
            info, original = resolved
            if not original.endswith("Command") or info.service is None:
                continue
            operation = original[: -len("Command")]
            if info.module == V3_DOCUMENT_MODULE:
                key = operation[:1].lower() + operation[1:]
                operation = DOCUMENT_OPERATIONS.get(key, operation)
            args, close = self._call_args(m.end() - 1)
            self._emit(m.start(), close + 1, operation, info.service, self._object_arg(args, 0), module=info.module)

    def _collect_paginators(self) -> None:
        for m in _FUNCTION_CALL.finditer(self.masked):
            resolved = self._resolve_symbol(m.group("fn"))
            if resolved is None:
                continue
            info, original = resolved
            if not original.startswith("paginate") or info.service is None:
                continue
            args, close = self._call_args(m.end() - 1)
            self._emit(
                m.start(), close + 1, original[len("paginate"):], info.service,
                self._object_arg(args, 1), module=info.module,
            )

    def _collect_method_calls(self) -> None:
        for m in _METHOD_CALL.finditer(self.masked):
            client = self.clients.get(m.group("recv"))
            if client is None or client.kind == "command":
                continue
            method = m.group("method")
            args, close = self._call_args(m.end() - 1)
            arg_index = 0
            if method in PRESIGN_METHODS:
                if not args or args[0][:1] not in ("'", '"'):
                    continue
                method = args[0][1:-1]
                arg_index = 1
            elif method in NON_OPERATION_METHODS:
                continue
            if client.kind == "document":
                if method not in DOCUMENT_OPERATIONS:
                    continue
                method = DOCUMENT_OPERATIONS[method]
            self._emit(
                m.start(), close + 1, method, client.service,
                self._object_arg(args, arg_index), module=client.module, client=client.variable,
            )

    def extract(self) -> list[SdkMethodCall]:
        self._collect_imports()
        if not self.sublibraries:
            return []
        try:
            self._collect_clients()
            self._collect_commands()
            self._collect_paginators()
            self._collect_method_calls()
        except LexError as e:
            line, _ = self._lines.position(e.offset)
            raise MethodExtractionError(self.path, str(e), line=line) from e
        return [self._calls[k] for k in sorted(self._calls)]


def extract_javascript_calls(source: str, path: str) -> list[SdkMethodCall]:
    """Extract SDK calls from JavaScript or TypeScript source text."""
    return JavaScriptExtractor(source, path).extract()
