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

"""Python SDK call extraction via the ``ast`` module (boto3 / aioboto3).

Tracks import aliases, session and client construction, paginators, and
method calls on client variables. Argument values are resolved
pessimistically: only literals and constant string concatenations count as
Resolved.
"""

from __future__ import annotations

import ast
import logging
import re
from typing import Optional

from iampilot.errors import MethodExtractionError
from iampilot.models.calls import Location, ParameterValue, SdkMethodCall

logger = logging.getLogger(__name__)

CLIENT_FACTORIES = frozenset({
    "boto3.client",
    "boto3.resource",
})
SESSION_FACTORIES = frozenset({
    "boto3.Session",
    "boto3.session.Session",
    "aioboto3.Session",
    "aioboto3.session.Session",
    "botocore.session.get_session",
    "botocore.session.Session",
})
CLIENT_METHODS_ON_SESSION = frozenset({"client", "resource", "create_client"})

# Client attributes that are SDK plumbing rather than service operations
NON_OPERATION_METHODS = frozenset({
    "get_paginator",
    "get_waiter",
    "can_paginate",
    "close",
    "generate_presigned_post",
    "exceptions",
    "meta",
})

_SNAKE_OPERATION = re.compile(r"^[a-z][a-z0-9]*(?:_[a-z0-9]+)+$")


def literal_value(node: ast.expr) -> ParameterValue:
    """Classify an argument expression.

    Resolved: str/int/float/bool/None literals, negated numbers, constant
    string concatenation, and f-strings without substitutions. Everything
    else keeps its source text as Unresolved.
    """
    if isinstance(node, ast.Constant):
        value = node.value
        if isinstance(value, bool):
            return ParameterValue.resolved("true" if value else "false")
        if value is None:
            return ParameterValue.resolved("null")
        if isinstance(value, (str, int, float)):
            return ParameterValue.resolved(str(value))
    if isinstance(node, ast.UnaryOp) and isinstance(node.op, ast.USub):
        inner = node.operand
        if isinstance(inner, ast.Constant) and isinstance(inner.value, (int, float)) and not isinstance(inner.value, bool):
            return ParameterValue.resolved(f"-{inner.value}")
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
        left = literal_value(node.left)
        right = literal_value(node.right)
        if (
            left.is_resolved
            and right.is_resolved
            and _is_str_constant(node.left)
            and _is_str_constant(node.right)
        ):
            return ParameterValue.resolved(left.value + right.value)
    if isinstance(node, ast.JoinedStr) and all(isinstance(v, ast.Constant) for v in node.values):
        return ParameterValue.resolved("".join(str(v.value) for v in node.values))
    return ParameterValue.unresolved(ast.unparse(node))


def _is_str_constant(node: ast.expr) -> bool:
    if isinstance(node, ast.Constant):
        return isinstance(node.value, str)
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
        return _is_str_constant(node.left) and _is_str_constant(node.right)
    return isinstance(node, ast.JoinedStr)


class SdkCallVisitor(ast.NodeVisitor):
    """AST visitor collecting SDK method calls in source order."""

    def __init__(self, filename: str, service_hints: Optional[list[str]] = None) -> None:
        self.filename = filename
        self.service_hints = list(service_hints or [])
        self.calls: list[SdkMethodCall] = []
        # local symbol -> fully qualified module/object
        self._import_aliases: dict[str, str] = {}
        self._sessions: set[str] = set()
        # variable (dotted for attributes, e.g. "self.s3") -> service name, "" when not literal
        self._clients: dict[str, str] = {}
        # paginator variable -> (service, operation)
        self._paginators: dict[str, tuple[str, str]] = {}
        self._consumed: set[int] = set()

    # ── names ──

    def _dotted(self, node: ast.AST) -> Optional[str]:
        parts = []
        current = node
        while isinstance(current, ast.Attribute):
            parts.append(current.attr)
            current = current.value
        if not isinstance(current, ast.Name):
            return None
        parts.append(current.id)
        return ".".join(reversed(parts))

    def _resolve_alias_name(self, name: str) -> str:
        head, _, rest = name.partition(".")
        mapped = self._import_aliases.get(head)
        if not mapped:
            return name
        return f"{mapped}.{rest}" if rest else mapped

    # ── construction recognition ──

    def _is_session_expr(self, node: ast.AST) -> bool:
        if isinstance(node, ast.Call):
            name = self._dotted(node.func)
            return bool(name) and self._resolve_alias_name(name) in SESSION_FACTORIES
        name = self._dotted(node)
        return name is not None and name in self._sessions

    def _client_service(self, node: ast.AST) -> Optional[str]:
        """Service name if ``node`` constructs a client; "" when it is not a literal."""
        if not isinstance(node, ast.Call):
            return None
        func = node.func
        name = self._dotted(func)
        is_factory = bool(name) and self._resolve_alias_name(name) in CLIENT_FACTORIES
        if not is_factory and isinstance(func, ast.Attribute) and func.attr in CLIENT_METHODS_ON_SESSION:
            is_factory = self._is_session_expr(func.value)
        if not is_factory:
            return None
        service_node: Optional[ast.expr] = node.args[0] if node.args else None
        for kw in node.keywords:
            if kw.arg == "service_name":
                service_node = kw.value
        if service_node is None:
            return ""
        value = literal_value(service_node)
        return value.value if value.is_resolved else ""

    def _receiver_service(self, node: ast.AST) -> Optional[str]:
        name = self._dotted(node)
        if name is not None and name in self._clients:
            return self._clients[name]
        return self._client_service(node)

    # ── emission ──

    def _arguments(self, node: ast.Call) -> dict[str, ParameterValue]:
        args: dict[str, ParameterValue] = {}
        for idx, arg in enumerate(node.args):
            if isinstance(arg, ast.Starred):
                continue
            args[f"_{idx}"] = literal_value(arg)
        for kw in node.keywords:
            if kw.arg is None:
                # **kwargs spread
                continue
            args[kw.arg] = literal_value(kw.value)
        return args

    def _emit(self, node: ast.Call, name: str, service: str, arguments: dict[str, ParameterValue]) -> None:
        if service:
            services = [service]
        else:
            services = list(self.service_hints)
        self.calls.append(
            SdkMethodCall(
                name=name,
                possible_services=services,
                arguments=arguments,
                location=Location(
                    file=self.filename,
                    start_line=node.lineno,
                    start_col=node.col_offset,
                    end_line=getattr(node, "end_lineno", None) or node.lineno,
                    end_col=getattr(node, "end_col_offset", None) or node.col_offset,
                ),
            )
        )

    # ── visitors ──

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            if alias.asname:
                self._import_aliases[alias.asname] = alias.name
            else:
                root_name = alias.name.split(".")[0]
                self._import_aliases[root_name] = root_name
        self.generic_visit(node)

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        if node.module:
            for alias in node.names:
                self._import_aliases[alias.asname or alias.name] = f"{node.module}.{alias.name}"
        self.generic_visit(node)

    def _bind(self, target: ast.AST, value: ast.AST) -> None:
        name = self._dotted(target)
        if name is None:
            return
        service = self._client_service(value)
        if service is not None:
            self._clients[name] = service
            logger.debug("%s:%s client %s -> %s", self.filename, getattr(target, "lineno", "?"), name, service or "?")
            return
        if self._is_session_expr(value) and isinstance(value, ast.Call):
            self._sessions.add(name)
            return
        if (
            isinstance(value, ast.Call)
            and isinstance(value.func, ast.Attribute)
            and value.func.attr == "get_paginator"
            and value.args
        ):
            client_service = self._receiver_service(value.func.value)
            op = literal_value(value.args[0])
            if client_service is not None and op.is_resolved:
                self._paginators[name] = (client_service, op.value)
                self._consumed.add(id(value))

    def visit_Assign(self, node: ast.Assign) -> None:
        for target in node.targets:
            self._bind(target, node.value)
        self.generic_visit(node)

    def visit_AnnAssign(self, node: ast.AnnAssign) -> None:
        if node.value is not None:
            self._bind(node.target, node.value)
        self.generic_visit(node)

    def _visit_with_items(self, items: list[ast.withitem]) -> None:
        for item in items:
            if item.optional_vars is not None:
                self._bind(item.optional_vars, item.context_expr)

    def visit_With(self, node: ast.With) -> None:
        self._visit_with_items(node.items)
        self.generic_visit(node)

    def visit_AsyncWith(self, node: ast.AsyncWith) -> None:
        self._visit_with_items(node.items)
        self.generic_visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if isinstance(func, ast.Attribute):
            self._handle_method_call(node, func)
        self.generic_visit(node)

    def _handle_method_call(self, node: ast.Call, func: ast.Attribute) -> None:
        method = func.attr
        receiver = func.value

        if method == "paginate":
            recv_name = self._dotted(receiver)
            if recv_name in self._paginators:
                service, op = self._paginators[recv_name]
                self._emit(node, op, service, self._arguments(node))
                return
            if (
                isinstance(receiver, ast.Call)
                and isinstance(receiver.func, ast.Attribute)
                and receiver.func.attr == "get_paginator"
                and receiver.args
            ):
                service = self._receiver_service(receiver.func.value)
                op = literal_value(receiver.args[0])
                if service is not None and op.is_resolved:
                    self._consumed.add(id(receiver))
                    self._emit(node, op.value, service, self._arguments(node))
                return

        service = self._receiver_service(receiver)
        if service is None:
            self._handle_unknown_receiver(node, method, receiver)
            return

        if method == "get_paginator":
            if id(node) in self._consumed or not node.args:
                return
            op = literal_value(node.args[0])
            if op.is_resolved:
                self._emit(node, op.value, service, {})
            return
        if method == "generate_presigned_url":
            self._emit_presigned(node, service)
            return
        if method in NON_OPERATION_METHODS or method.startswith("_") or not method.islower():
            return
        self._emit(node, method, service, self._arguments(node))

    def _emit_presigned(self, node: ast.Call, service: str) -> None:
        op_node: Optional[ast.expr] = node.args[0] if node.args else None
        params_node: Optional[ast.expr] = node.args[1] if len(node.args) > 1 else None
        for kw in node.keywords:
            if kw.arg == "ClientMethod":
                op_node = kw.value
            elif kw.arg == "Params":
                params_node = kw.value
        if op_node is None:
            return
        op = literal_value(op_node)
        if not op.is_resolved:
            return
        arguments: dict[str, ParameterValue] = {}
        if isinstance(params_node, ast.Dict):
            for key, value in zip(params_node.keys, params_node.values):
                if isinstance(key, ast.Constant) and isinstance(key.value, str):
                    arguments[key.value] = literal_value(value)
        self._emit(node, op.value, service, arguments)

    def _handle_unknown_receiver(self, node: ast.Call, method: str, receiver: ast.AST) -> None:
        # Clients passed in as parameters or built by factories land here. Without
        # hints the candidate services are left empty for enrichment to resolve.
        if not _SNAKE_OPERATION.match(method):
            return
        name = self._dotted(receiver)
        if name is None or name in self._sessions or name.split(".")[0] in self._import_aliases:
            return
        self._emit(node, method, "", self._arguments(node))


def extract_python_calls(
    source: str, path: str, service_hints: Optional[list[str]] = None
) -> list[SdkMethodCall]:
    """Extract SDK calls from Python source text."""
    try:
        tree = ast.parse(source, filename=path)
    except SyntaxError as e:
        raise MethodExtractionError(path, f"invalid Python syntax: {e.msg}", line=e.lineno) from e
    visitor = SdkCallVisitor(path, service_hints)
    visitor.visit(tree)
    return visitor.calls
