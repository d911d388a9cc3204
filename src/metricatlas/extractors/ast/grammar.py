from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from metricatlas.extractors.ast.ir import ParsedFile


class Grammar(ABC):
    """Parses one language into the shared expression tree."""

    language: str = ""
    default_include: Sequence[str] = ()
    default_exclude: Sequence[str] = ()

    @abstractmethod
    def parse(self, rel_path: str, text: str) -> ParsedFile:
        """Lower one file. Syntax problems are reported in ``ParsedFile.errors``."""

    @abstractmethod
    def scope_key(self, rel_path: str) -> str:
        """Files sharing a key share constant bindings."""
