from __future__ import annotations

import threading
from collections import defaultdict
from typing import Sequence

import structlog

from metricatlas.config.sources import ExtractorOptions
from metricatlas.core.errors import ConfigurationError
from metricatlas.domain.models import ExtractionMethod, SourceDescriptor
from metricatlas.extractors.ast.folding import ConstantScope
from metricatlas.extractors.ast.grammar import Grammar
from metricatlas.extractors.ast.ir import ParsedFile
from metricatlas.extractors.ast.shapes import ShapeRecognizer
from metricatlas.extractors.base import ExtractionResult, Extractor
from metricatlas.fetch.models import FetchResult

logger = structlog.get_logger()


def grammar_for(language: str | None) -> Grammar:
    """Instantiate the grammar for a configured language."""
    if language in (None, "python", "py"):
        from metricatlas.extractors.ast.python_grammar import PythonGrammar

        return PythonGrammar()
    if language in ("go", "golang"):
        from metricatlas.extractors.ast.go_grammar import GoGrammar

        return GoGrammar()
    raise ConfigurationError(f"No AST grammar for language '{language}'")


def _component(file_path: str) -> str:
    """Directory of the defining file; metrics are unique per package."""
    return file_path.rsplit("/", 1)[0] if "/" in file_path else ""


class AstExtractor(Extractor):
    """Language-AST extraction parameterized by a grammar.

    Files are grouped by the grammar's scope key (package directory for Go,
    the file itself for Python) so constants defined in one file can name
    metrics declared in another file of the same package.
    """

    def __init__(
        self,
        descriptor: SourceDescriptor,
        options: ExtractorOptions | None = None,
        grammar: Grammar | None = None,
    ) -> None:
        super().__init__(descriptor, options)
        self.grammar = grammar or grammar_for(self.options.language)

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.LANGUAGE_AST

    @property
    def default_include(self) -> Sequence[str]:  # type: ignore[override]
        return self.grammar.default_include

    @property
    def default_exclude(self) -> Sequence[str]:  # type: ignore[override]
        return self.grammar.default_exclude

    def parse(self, fetch_result: FetchResult, cancelled: threading.Event | None = None) -> ExtractionResult:
        result = ExtractionResult()
        tree = fetch_result.tree
        scopes: dict[str, list[ParsedFile]] = defaultdict(list)

        for path in self.files(fetch_result):
            rel = tree.relative(path)
            if cancelled is not None and cancelled.is_set():
                logger.info("extraction_cancelled", source=self.descriptor.name, next_file=rel)
                return result
            try:
                parsed = self.grammar.parse(rel, tree.read_text(path))
            except Exception as e:
                logger.warning("ast_parse_failed", source=self.descriptor.name, file=rel, error=str(e))
                result.add_failure(rel, f"{type(e).__name__}: {e}")
                continue
            for line, reason in parsed.errors:
                result.add_failure(rel, reason, line=line)
            scopes[self.grammar.scope_key(rel)].append(parsed)

        for files in scopes.values():
            scope = ConstantScope(b for parsed in files for b in parsed.bindings)
            recognized = ShapeRecognizer(scope, files).recognize()
            for skipped in recognized.skipped:
                logger.info(
                    "ast_definition_skipped",
                    source=self.descriptor.name,
                    file=skipped.file_path,
                    line=skipped.line,
                    reason=skipped.reason,
                )
                result.add_failure(skipped.file_path, skipped.reason, line=skipped.line)
            for definition in recognized.definitions:
                result.metrics.append(
                    self.make_metric(
                        fetch_result,
                        name=definition.name,
                        raw_type=definition.raw_type,
                        file_path=definition.file_path,
                        description=definition.description,
                        unit=definition.unit,
                        label_names=definition.labels,
                        component=_component(definition.file_path),
                        line=definition.line,
                    )
                )
        return result
