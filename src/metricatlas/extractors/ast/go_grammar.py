from __future__ import annotations

import ast
from dataclasses import replace
from pathlib import PurePosixPath
from typing import Iterator

import tree_sitter_go
from tree_sitter import Language, Node as TSNode, Parser

from metricatlas.extractors.ast.grammar import Grammar
from metricatlas.extractors.ast.ir import (
    Binding,
    Call,
    Composite,
    Concat,
    Lit,
    Node,
    Opaque,
    ParsedFile,
    Ref,
)

GO_LANGUAGE = Language(tree_sitter_go.language())

_WRAPPERS = {"parenthesized_expression", "unary_expression", "literal_element"}


def _text(node: TSNode) -> str:
    return node.text.decode("utf-8", errors="replace") if node.text is not None else ""


def _unquote(literal: str) -> str:
    if literal.startswith("`"):
        return literal.strip("`")
    try:
        value = ast.literal_eval(literal)
    except (ValueError, SyntaxError):
        return literal.strip('"')
    return value if isinstance(value, str) else literal.strip('"')


def _walk(node: TSNode) -> Iterator[TSNode]:
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def _unwrap(node: TSNode) -> TSNode:
    while node.type in _WRAPPERS:
        if node.type == "unary_expression":
            operator = node.child_by_field_name("operator")
            if operator is None or _text(operator) != "&":
                return node
            operand = node.child_by_field_name("operand")
        else:
            named = [c for c in node.named_children if c.type != "comment"]
            operand = named[0] if len(named) == 1 else None
        if operand is None:
            return node
        node = operand
    return node


def _is_selector_chain(node: TSNode) -> bool:
    if node.type in ("identifier", "field_identifier", "package_identifier", "type_identifier"):
        return True
    if node.type == "selector_expression":
        operand = node.child_by_field_name("operand")
        return operand is not None and _is_selector_chain(operand)
    return False


def _line(node: TSNode) -> int:
    return node.start_point[0] + 1


_FUNCTIONS = ("function_declaration", "method_declaration", "func_literal")
_DECLARING = ("short_var_declaration", "range_clause", "receive_statement")
_NO_NAMES: frozenset[str] = frozenset()


def _own_nodes(scope: TSNode) -> Iterator[TSNode]:
    """Nodes of ``scope`` outside any function literal nested in it."""
    stack = list(reversed(scope.children))
    while stack:
        current = stack.pop()
        yield current
        if current.type not in _FUNCTIONS:
            stack.extend(reversed(current.children))


def _identifiers(node: TSNode | None) -> list[str]:
    if node is None:
        return []
    if node.type == "identifier":
        return [_text(node)]
    return [_text(c) for c in node.named_children if c.type == "identifier"]


def _function_locals(function: TSNode) -> set[str]:
    """Parameters, results and every name the function body declares."""
    names: set[str] = set()
    for field_name in ("receiver", "parameters", "result"):
        params = function.child_by_field_name(field_name)
        if params is None:
            continue
        for node in _walk(params):
            if node.type in ("parameter_declaration", "variadic_parameter_declaration"):
                names.update(_text(n) for n in node.children_by_field_name("name"))
    for node in _own_nodes(function):
        if node.type in _DECLARING and any(c.type == ":=" for c in node.children):
            names.update(_identifiers(node.child_by_field_name("left")))
        elif node.type in ("var_spec", "const_spec"):
            names.update(_text(n) for n in node.children_by_field_name("name"))
        elif node.type == "type_switch_statement":
            names.update(_identifiers(node.child_by_field_name("alias")))
    return names


class _FunctionScopes:
    """Local names visible at each call and literal inside a function.

    Assignments in function bodies to names that are not local rebind a
    package variable; they are collected in ``reassigned``.
    """

    def __init__(self, root: TSNode) -> None:
        self.shadowed: dict[int, frozenset[str]] = {}
        self.reassigned: list[Binding] = []
        for node in _own_nodes(root):
            if node.type in _FUNCTIONS:
                self._visit(node, _NO_NAMES)

    def _visit(self, function: TSNode, enclosing: frozenset[str]) -> None:
        local = enclosing | _function_locals(function)
        for node in _own_nodes(function):
            if node.type == "func_literal":
                self._visit(node, local)
            elif node.type in ("call_expression", "composite_literal") and local:
                self.shadowed[node.id] = local
            elif node.type == "assignment_statement":
                for name in _identifiers(node.child_by_field_name("left")):
                    if name != "_" and name not in local:
                        self.reassigned.append(Binding(name, Opaque("reassigned in function"), _line(node)))


class _Lowerer:
    def __init__(self, shadowed: dict[int, frozenset[str]] | None = None) -> None:
        self._shadowed = shadowed or {}

    def lower(self, node: TSNode | None) -> Node:
        if node is None:
            return Opaque()
        node = _unwrap(node)
        kind = node.type
        if kind in ("interpreted_string_literal", "raw_string_literal"):
            return Lit(_unquote(_text(node)))
        if kind in ("int_literal", "float_literal"):
            return Lit(_text(node))
        if _is_selector_chain(node):
            return Ref("".join(_text(node).split()))
        if kind == "binary_expression":
            operator = node.child_by_field_name("operator")
            if operator is not None and _text(operator) == "+":
                parts: list[Node] = []
                for side in (node.child_by_field_name("left"), node.child_by_field_name("right")):
                    lowered = self.lower(side)
                    parts.extend(lowered.parts if isinstance(lowered, Concat) else (lowered,))
                return Concat(tuple(parts))
            return Opaque(_text(node))
        if kind == "call_expression":
            return self.lower_call(node)
        if kind == "composite_literal":
            type_node = node.child_by_field_name("type")
            body = node.child_by_field_name("body")
            literal = self._lower_literal(body, _text(type_node) if type_node is not None else "", _line(node))
            return replace(literal, shadowed=self._shadowed.get(node.id, _NO_NAMES))
        if kind == "literal_value":
            return self._lower_literal(node, "", _line(node))
        return Opaque(kind)

    def _lower_literal(self, body: TSNode | None, type_name: str, line: int) -> Composite:
        entries: list[tuple[Node, Node]] = []
        elements: list[Node] = []
        if body is not None:
            for child in body.named_children:
                if child.type == "comment":
                    continue
                if child.type == "keyed_element":
                    parts = [c for c in child.named_children if c.type != "comment"]
                    if len(parts) < 2:
                        continue
                    key, value = parts[0], parts[-1]
                    entries.append((self._lower_key(key), self.lower(value)))
                else:
                    elements.append(self.lower(child))
        return Composite(
            type_name="".join(type_name.split()),
            entries=tuple(entries),
            elements=tuple(elements),
            line=line,
        )

    def _lower_key(self, key: TSNode) -> Node:
        key = _unwrap(key)
        if key.type in ("field_identifier", "identifier"):
            return Ref(_text(key))
        return self.lower(key)

    def lower_call(self, node: TSNode) -> Call:
        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        args: list[Node] = []
        if arguments is not None:
            args = [self.lower(a) for a in arguments.named_children if a.type != "comment"]
        callee = "".join(_text(function).split()) if function is not None else "<expr>"
        return Call(
            callee=callee,
            args=tuple(args),
            line=_line(node),
            column=node.start_point[1],
            target=_assignment_target(node),
            shadowed=self._shadowed.get(node.id, _NO_NAMES),
        )


def _assignment_target(node: TSNode) -> str | None:
    """Name a call result is assigned to, or the struct key it initializes."""
    child = node
    parent = node.parent
    while parent is not None and parent.type in ("parenthesized_expression", "unary_expression"):
        child, parent = parent, parent.parent
    if parent is None:
        return None

    if parent.type == "literal_element" and parent.parent is not None and parent.parent.type == "keyed_element":
        elements = [c for c in parent.parent.named_children if c.type != "comment"]
        if len(elements) >= 2 and elements[-1].id == parent.id:
            return "".join(_text(elements[0]).split())
        return None
    if parent.type == "keyed_element":
        elements = [c for c in parent.named_children if c.type != "comment"]
        if len(elements) >= 2 and elements[-1].id == child.id:
            return "".join(_text(elements[0]).split())
        return None

    if parent.type != "expression_list" or parent.parent is None:
        return None
    values = [c for c in parent.named_children if c.type != "comment"]
    index = next((i for i, c in enumerate(values) if c.id == child.id), None)
    if index is None:
        return None
    holder = parent.parent
    if holder.type in ("assignment_statement", "short_var_declaration"):
        left = holder.child_by_field_name("left")
        names = [c for c in left.named_children if c.type != "comment"] if left is not None else []
    elif holder.type in ("var_spec", "const_spec"):
        names = holder.children_by_field_name("name")
    else:
        return None
    if index < len(names):
        return "".join(_text(names[index]).split())
    return None


class GoGrammar(Grammar):
    """Lower Go sources with tree-sitter.

    Package-level ``const`` and ``var`` declarations of every file in one
    directory form a shared constant scope. Parameters and names declared
    with ``:=`` or ``var`` inside a function hide it, and package variables
    reassigned in a function body are not constants.
    """

    language = "go"
    default_include = ("**/*.go",)
    default_exclude = ("**/*_test.go", "**/vendor/**", "**/testdata/**")

    def __init__(self) -> None:
        self._parser = Parser(GO_LANGUAGE)

    def scope_key(self, rel_path: str) -> str:
        return str(PurePosixPath(rel_path).parent)

    def parse(self, rel_path: str, text: str) -> ParsedFile:
        tree = self._parser.parse(text.encode("utf-8"))
        root = tree.root_node
        parsed = ParsedFile(path=rel_path)
        if root.has_error:
            parsed.errors.append((None, "syntax errors; results may be incomplete"))

        scopes = _FunctionScopes(root)
        lowerer = _Lowerer(scopes.shadowed)
        for declaration in root.named_children:
            if declaration.type not in ("const_declaration", "var_declaration"):
                continue
            for spec in _walk(declaration):
                if spec.type not in ("const_spec", "var_spec"):
                    continue
                names = spec.children_by_field_name("name")
                value = spec.child_by_field_name("value")
                values = [c for c in value.named_children if c.type != "comment"] if value is not None else []
                for index, name in enumerate(names):
                    lowered = lowerer.lower(values[index]) if index < len(values) else Opaque("iota")
                    parsed.bindings.append(Binding(_text(name), lowered, _line(spec)))
        parsed.bindings.extend(scopes.reassigned)

        for node in _walk(root):
            if node.type == "call_expression":
                parsed.calls.append(lowerer.lower_call(node))
            elif node.type == "composite_literal":
                lowered = lowerer.lower(node)
                if isinstance(lowered, Composite):
                    parsed.composites.append(lowered)
        return parsed
