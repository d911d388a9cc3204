"""
Constant folding over lowered expressions.

Only names bound exactly once in a scope are folded. Anything that would
need data-flow analysis (reassignment, parameters, function results) is
left unresolved and reported by the caller; it is never guessed.
"""

from __future__ import annotations

import copy
import re
from collections import defaultdict
from typing import Iterable

from metricatlas.extractors.ast.ir import Binding, Call, Composite, Concat, Lit, Node, Ref

MAX_DEPTH = 12

_SPRINTF_VERB = re.compile(r"%[sv%]")
_ANY_VERB = re.compile(r"%[^%]")


class Unresolved(Exception):
    """Raised when an expression is not a constant."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ConstantScope:
    """Single-assignment bindings visible to one package or module."""

    def __init__(self, bindings: Iterable[Binding] = ()) -> None:
        grouped: dict[str, list[Node]] = defaultdict(list)
        for binding in bindings:
            grouped[binding.name].append(binding.value)
        self._values = {name: values[0] for name, values in grouped.items() if len(values) == 1}
        self._ambiguous = {name for name, values in grouped.items() if len(values) > 1}
        self._local: frozenset[str] = frozenset()
        self._module = self

    def shadowed_by(self, names: Iterable[str]) -> ConstantScope:
        """This scope as seen from a function that binds ``names`` itself."""
        local = frozenset(names)
        if not local:
            return self
        view = copy.copy(self)
        view._local = self._local | local
        return view

    def lookup(self, name: str) -> Node:
        if name.split(".", 1)[0] in self._local:
            raise Unresolved(f"'{name}' is a local variable, not a constant")
        if name in self._ambiguous:
            raise Unresolved(f"'{name}' is assigned more than once")
        if name not in self._values:
            raise Unresolved(f"'{name}' is not a constant in scope")
        return self._values[name]

    def resolve(self, node: Node | None, depth: int = 0) -> str:
        """Fold ``node`` to a string or raise :class:`Unresolved`."""
        if node is None:
            raise Unresolved("missing expression")
        if depth > MAX_DEPTH:
            raise Unresolved("constant expression nested too deeply")
        if isinstance(node, Lit):
            return node.value
        if isinstance(node, Ref):
            # a constant's own value is folded where it was bound
            return self._module.resolve(self.lookup(node.name), depth + 1)
        if isinstance(node, Concat):
            return "".join(self.resolve(part, depth + 1) for part in node.parts)
        if isinstance(node, Call):
            return self._fold_call(node, depth)
        raise Unresolved("not a constant expression")

    def try_resolve(self, node: Node | None) -> str | None:
        try:
            return self.resolve(node)
        except Unresolved:
            return None

    def resolve_list(self, node: Node | None, depth: int = 0) -> list[str]:
        """Fold a list literal (or a reference to one) to its string items.

        Items that are not constants are skipped.
        """
        if node is None or depth > MAX_DEPTH:
            return []
        if isinstance(node, Ref):
            try:
                return self._module.resolve_list(self.lookup(node.name), depth + 1)
            except Unresolved:
                return []
        if isinstance(node, Composite):
            values = [self.try_resolve(element) for element in node.elements]
            return [v for v in values if v is not None]
        return []

    def _fold_call(self, call: Call, depth: int) -> str:
        if call.name == "BuildFQName":
            parts = [self.resolve(arg, depth + 1) for arg in call.args[:3]]
            return "_".join(p for p in parts if p)
        if call.name == "Sprintf":
            if not call.args:
                raise Unresolved("Sprintf without a format")
            fmt = self.resolve(call.args[0], depth + 1)
            if len(_ANY_VERB.findall(fmt.replace("%%", ""))) != len(
                _SPRINTF_VERB.findall(fmt.replace("%%", ""))
            ):
                raise Unresolved("Sprintf format uses verbs other than %s/%v")
            values = iter(self.resolve(arg, depth + 1) for arg in call.args[1:])

            def substitute(match: re.Match[str]) -> str:
                if match.group(0) == "%%":
                    return "%"
                try:
                    return next(values)
                except StopIteration:
                    raise Unresolved("Sprintf has fewer arguments than verbs") from None

            return _SPRINTF_VERB.sub(substitute, fmt)
        raise Unresolved(f"call to {call.callee}() is not a constant")
