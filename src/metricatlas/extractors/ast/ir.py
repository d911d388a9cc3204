"""
Language-neutral expression tree produced by the grammars.

Grammars lower only what metric recognition needs: string literals,
references, concatenation, calls and composite literals. Everything else
becomes :class:`Opaque`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True)
class Lit:
    value: str


@dataclass(frozen=True)
class Ref:
    """An identifier or dotted selector such as ``prometheus.GaugeValue``."""

    name: str

    @property
    def last(self) -> str:
        return self.name.rsplit(".", 1)[-1]


@dataclass(frozen=True)
class Concat:
    parts: tuple[Node, ...]


@dataclass(frozen=True)
class Call:
    callee: str
    args: tuple[Node, ...] = ()
    kwargs: tuple[tuple[str, Node], ...] = ()
    line: int = 0
    column: int = 0
    target: str | None = None
    # names bound in the enclosing function; they hide module constants
    shadowed: frozenset[str] = frozenset()

    @property
    def name(self) -> str:
        """Last segment of the callee, e.g. ``NewCounterVec``."""
        return self.callee.rsplit(".", 1)[-1]

    def arg(self, index: int, keyword: str | None = None) -> Node | None:
        if keyword is not None:
            for key, value in self.kwargs:
                if key == keyword:
                    return value
        if index < len(self.args):
            return self.args[index]
        return None

    def kwarg(self, keyword: str) -> Node | None:
        for key, value in self.kwargs:
            if key == keyword:
                return value
        return None


@dataclass(frozen=True)
class Composite:
    """Struct, map, dict or list literal.

    ``entries`` holds keyed elements, ``elements`` positional ones.
    """

    type_name: str = ""
    entries: tuple[tuple[Node, Node], ...] = ()
    elements: tuple[Node, ...] = ()
    line: int = 0
    shadowed: frozenset[str] = frozenset()

    def lookup(self, *names: str) -> Node | None:
        wanted = {n.lower() for n in names}
        for key, value in self.entries:
            label = key.value if isinstance(key, Lit) else key.last if isinstance(key, Ref) else None
            if label is not None and label.lower() in wanted:
                return value
        return None


@dataclass(frozen=True)
class Opaque:
    text: str = ""


Node = Union[Lit, Ref, Concat, Call, Composite, Opaque]


@dataclass(frozen=True)
class Binding:
    name: str
    value: Node
    line: int = 0


@dataclass
class ParsedFile:
    """Everything a grammar lowered from one source file."""

    path: str
    bindings: list[Binding] = field(default_factory=list)
    calls: list[Call] = field(default_factory=list)
    composites: list[Composite] = field(default_factory=list)
    errors: list[tuple[int | None, str]] = field(default_factory=list)
