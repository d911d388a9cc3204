from __future__ import annotations

import ast
from typing import Iterator

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
from metricatlas.extractors.ast.shapes import PROMETHEUS_CLIENT

_FUNCTIONS = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda)
_SCOPES = _FUNCTIONS + (ast.ClassDef, ast.ListComp, ast.SetComp, ast.DictComp, ast.GeneratorExp)

_NO_NAMES: frozenset[str] = frozenset()


def _dotted(node: ast.expr) -> str | None:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        base = _dotted(node.value)
        return f"{base}.{node.attr}" if base else None
    return None


def _callee(node: ast.expr) -> str:
    dotted = _dotted(node)
    if dotted is not None:
        return dotted
    if isinstance(node, ast.Attribute):
        return f"<expr>.{node.attr}"
    return "<expr>"


class _Lowerer:
    def __init__(
        self,
        targets: dict[int, str],
        shadowed: dict[int, frozenset[str]] | None = None,
        imports: dict[str, str] | None = None,
    ) -> None:
        self._targets = targets
        self._shadowed = shadowed or {}
        self._imports = imports or {}

    def lower(self, node: ast.expr | None) -> Node:
        if node is None:
            return Opaque()
        if isinstance(node, ast.Constant):
            if isinstance(node.value, str):
                return Lit(node.value)
            if isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
                return Lit(str(node.value))
            return Opaque(repr(node.value))
        dotted = _dotted(node)
        if dotted is not None:
            return Ref(dotted)
        if isinstance(node, ast.JoinedStr):
            parts: list[Node] = []
            for value in node.values:
                if isinstance(value, ast.FormattedValue):
                    if value.conversion != -1 or value.format_spec is not None:
                        return Opaque("formatted f-string")
                    parts.append(self.lower(value.value))
                else:
                    parts.append(self.lower(value))
            return Concat(tuple(parts))
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Add):
            left, right = self.lower(node.left), self.lower(node.right)
            flat: list[Node] = []
            for side in (left, right):
                flat.extend(side.parts if isinstance(side, Concat) else (side,))
            return Concat(tuple(flat))
        if isinstance(node, ast.Call):
            return self.lower_call(node)
        if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
            return Composite(
                type_name=type(node).__name__.lower(),
                elements=tuple(self.lower(e) for e in node.elts),
                line=node.lineno,
            )
        if isinstance(node, ast.Dict):
            return Composite(
                type_name="dict",
                entries=tuple(
                    (self.lower(k), self.lower(v)) for k, v in zip(node.keys, node.values) if k is not None
                ),
                line=node.lineno,
                shadowed=self._shadowed.get(id(node), _NO_NAMES),
            )
        return Opaque(type(node).__name__)

    def lower_call(self, node: ast.Call) -> Call:
        return Call(
            callee=self._qualify(_callee(node.func)),
            args=tuple(self.lower(a) for a in node.args if not isinstance(a, ast.Starred)),
            kwargs=tuple((kw.arg, self.lower(kw.value)) for kw in node.keywords if kw.arg is not None),
            line=node.lineno,
            column=node.col_offset,
            target=self._targets.get(id(node)),
            shadowed=self._shadowed.get(id(node), _NO_NAMES),
        )

    def _qualify(self, callee: str) -> str:
        root, dot, rest = callee.partition(".")
        if root in self._imports:
            return self._imports[root] + dot + rest
        return callee


def _assignment_targets(tree: ast.AST) -> dict[int, str]:
    """Map call nodes to the name they are assigned to."""
    targets: dict[int, str] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Assign) and len(node.targets) == 1:
            target, value = node.targets[0], node.value
        elif isinstance(node, ast.AnnAssign) and node.value is not None:
            target, value = node.target, node.value
        else:
            continue
        name = _dotted(target)
        if name and isinstance(value, ast.Call):
            targets[id(value)] = name
    return targets


def _prometheus_imports(tree: ast.AST) -> dict[str, str]:
    """Map local names to the prometheus_client objects they were imported as."""
    imports: dict[str, str] = {}
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                if alias.name == PROMETHEUS_CLIENT or alias.name.startswith(PROMETHEUS_CLIENT + "."):
                    if alias.asname:
                        imports[alias.asname] = alias.name
                    else:
                        imports[PROMETHEUS_CLIENT] = PROMETHEUS_CLIENT
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            if node.module == PROMETHEUS_CLIENT or node.module.startswith(PROMETHEUS_CLIENT + "."):
                for alias in node.names:
                    if alias.name != "*":
                        imports[alias.asname or alias.name] = f"{node.module}.{alias.name}"
    return imports


def _own_nodes(scope: ast.AST) -> Iterator[ast.AST]:
    """Nodes of ``scope`` outside any scope nested in it.

    Nested scope nodes themselves are yielded, their contents are not.
    """
    stack = list(ast.iter_child_nodes(scope))
    while stack:
        node = stack.pop()
        yield node
        if not isinstance(node, _SCOPES):
            stack.extend(ast.iter_child_nodes(node))


def _bound_names(scope: ast.AST) -> tuple[set[str], set[str]]:
    """Names ``scope`` binds itself, and the subset it declares ``global``."""
    bound: set[str] = set()
    declared_global: set[str] = set()
    if isinstance(scope, _FUNCTIONS):
        args = scope.args
        for arg in (*args.posonlyargs, *args.args, *args.kwonlyargs, args.vararg, args.kwarg):
            if arg is not None:
                bound.add(arg.arg)
    for node in _own_nodes(scope):
        if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store):
            bound.add(node.id)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            bound.add(node.name)
        elif isinstance(node, (ast.Import, ast.ImportFrom)):
            bound.update((alias.asname or alias.name).split(".")[0] for alias in node.names if alias.name != "*")
        elif isinstance(node, ast.ExceptHandler) and node.name:
            bound.add(node.name)
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            bound.add(node.name)
        elif isinstance(node, ast.Global):
            declared_global.update(node.names)
    return bound, declared_global & bound


class _FunctionScopes:
    """Local names visible at each call and dict literal inside a function.

    Names a function rebinds through ``global`` are collected in
    ``rebound`` so the module scope stops treating them as constants.
    """

    def __init__(self, tree: ast.Module) -> None:
        self.shadowed: dict[int, frozenset[str]] = {}
        self.rebound: list[Binding] = []
        for node in _own_nodes(tree):
            if isinstance(node, _SCOPES):
                self._visit(node, _NO_NAMES)

    def _visit(self, scope: ast.AST, enclosing: frozenset[str]) -> None:
        bound, rebound = _bound_names(scope)
        for name in sorted(rebound):
            self.rebound.append(Binding(name, Opaque("rebound by global"), getattr(scope, "lineno", 0)))
        local = enclosing | (bound - rebound)
        # functions nested in a class body do not see the class namespace
        inherited = enclosing if isinstance(scope, ast.ClassDef) else local
        for node in _own_nodes(scope):
            if isinstance(node, _SCOPES):
                self._visit(node, inherited)
            elif isinstance(node, (ast.Call, ast.Dict)) and local:
                self.shadowed[id(node)] = local


class PythonGrammar(Grammar):
    """Lower Python modules with the standard library ``ast`` parser.

    Module-level assignments form the constant scope of each file. Names
    bound inside a function hide module constants for the calls in it.
    """

    language = "python"
    default_include = ("**/*.py",)
    default_exclude = ("**/tests/**", "**/test/**", "**/test_*.py", "**/*_test.py")

    def scope_key(self, rel_path: str) -> str:
        return rel_path

    def parse(self, rel_path: str, text: str) -> ParsedFile:
        parsed = ParsedFile(path=rel_path)
        try:
            tree = ast.parse(text, filename=rel_path)
        except SyntaxError as e:
            parsed.errors.append((e.lineno, f"syntax error: {e.msg}"))
            return parsed

        scopes = _FunctionScopes(tree)
        lowerer = _Lowerer(_assignment_targets(tree), scopes.shadowed, _prometheus_imports(tree))

        declared: set[int] = set()
        for stmt in tree.body:
            if isinstance(stmt, ast.Assign):
                for target in stmt.targets:
                    if isinstance(target, ast.Name):
                        declared.add(id(target))
                        parsed.bindings.append(Binding(target.id, lowerer.lower(stmt.value), stmt.lineno))
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                declared.add(id(stmt.target))
                value = lowerer.lower(stmt.value) if stmt.value is not None else Opaque()
                parsed.bindings.append(Binding(stmt.target.id, value, stmt.lineno))

        # loop targets, augmented and unpacking assignments at module level
        for node in _own_nodes(tree):
            if isinstance(node, ast.Name) and isinstance(node.ctx, ast.Store) and id(node) not in declared:
                parsed.bindings.append(Binding(node.id, Opaque("rebound"), node.lineno))
        parsed.bindings.extend(scopes.rebound)

        for node in ast.walk(tree):
            if isinstance(node, ast.Call):
                parsed.calls.append(lowerer.lower_call(node))
            elif isinstance(node, ast.Dict):
                lowered = lowerer.lower(node)
                if isinstance(lowered, Composite):
                    parsed.composites.append(lowered)
        return parsed
