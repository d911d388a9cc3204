"""Sources used when no sources file is configured."""

from __future__ import annotations

from typing import Any

from metricatlas.config.sources import SourcesConfig

BUILTIN_SOURCES: dict[str, Any] = {
    "defaults": {"fetcher": "git", "shallow": True},
    "sources": [
        {
            "name": "otel-collector-contrib",
            "category": "collector-receiver",
            "repository": "https://github.com/open-telemetry/opentelemetry-collector-contrib",
            "confidence": "Authoritative",
            "extraction_method": "StructuredMetadata",
            "extractor": {"include": ["receiver/**/metadata.yaml"]},
        },
        {
            "name": "node-exporter",
            "category": "exporter",
            "repository": "https://github.com/prometheus/node_exporter",
            "ref": "master",
            "confidence": "Derived",
            "extraction_method": "LanguageAst",
            "extractor": {
                "language": "go",
                "include": ["collector/**/*.go"],
                "exclude": ["**/*_test.go"],
            },
        },
        {
            "name": "kube-state-metrics",
            "category": "kubernetes-metrics",
            "repository": "https://github.com/kubernetes/kube-state-metrics",
            "confidence": "Derived",
            "extraction_method": "LanguageAst",
            "extractor": {
                "language": "go",
                "include": ["internal/store/**/*.go"],
                "exclude": ["**/*_test.go"],
            },
        },
        {
            "name": "otel-python-contrib",
            "category": "instrumentation-library",
            "repository": "https://github.com/open-telemetry/opentelemetry-python-contrib",
            "confidence": "Derived",
            "extraction_method": "LanguageAst",
            "extractor": {
                "language": "python",
                "include": ["instrumentation/**/*.py"],
                "exclude": ["**/tests/**"],
            },
        },
        {
            "name": "aws-rds-cloudwatch",
            "category": "cloud-metrics",
            "repository": "https://github.com/awsdocs/amazon-rds-user-guide",
            "confidence": "VendorClaimed",
            "extraction_method": "PatternMatch",
            "extractor": {
                "profile": "markdown-table",
                "include": ["doc_source/rds-metrics.md"],
                "name_prefix": "aws_rds_",
                "default_type": "gauge",
            },
        },
    ],
}


def builtin_sources() -> SourcesConfig:
    return SourcesConfig.from_dict(BUILTIN_SOURCES, origin="builtin")
