"""Language-AST extraction: grammars, constant folding and shape recognition."""

from metricatlas.extractors.ast.extractor import AstExtractor, grammar_for
from metricatlas.extractors.ast.grammar import Grammar

__all__ = ["AstExtractor", "Grammar", "grammar_for"]
