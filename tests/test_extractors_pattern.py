"""Tests for the pattern-match extractor."""

import threading

import pytest
from factories import make_descriptor, make_fetch_result, write_tree

from metricatlas.config.sources import ExtractorOptions
from metricatlas.core.errors import ConfigurationError
from metricatlas.domain.models import ConfidenceLevel, ExtractionMethod, SourceCategory
from metricatlas.extractors import PatternMatchExtractor, create_extractor

RDS_DOC = """\
# Amazon CloudWatch metrics for Amazon RDS

Some introduction text.

| Metric | Console name | Description | Units |
| --- | --- | --- | --- |
| `ReadLatency` | Read latency | The average amount of time taken per disk I/O operation. | Seconds |
| `WriteIOPS` | Write IOPS | The average number of disk write I/O operations per second. | Count/Second |
| `Not A Metric` | - | Free text | - |

| Region | Endpoint |
| --- | --- |
| us-east-1 | rds.us-east-1.amazonaws.com |
"""

RUST_SOURCE = """\
lazy_static! {
    static ref REQUESTS: IntCounter = IntCounter::new("app_requests_total", "Requests served").unwrap();
    static ref QUEUE: Gauge = Gauge::new("app_queue_depth", "Jobs waiting").unwrap();
}
"""


def extractor(**options) -> PatternMatchExtractor:
    descriptor = make_descriptor(
        "aws-rds-cloudwatch",
        category=SourceCategory.CLOUD_METRICS,
        confidence=ConfidenceLevel.VENDOR_CLAIMED,
        method=ExtractionMethod.PATTERN_MATCH,
    )
    return PatternMatchExtractor(descriptor, ExtractorOptions(**options))


class TestMarkdownTables:
    """Tests for the markdown-table profile."""

    def test_reads_metric_tables(self, tmp_path):
        """Test rows of tables with a metric column become metrics."""
        write_tree(tmp_path, {"doc_source/rds-metrics.md": RDS_DOC})
        result = extractor(name_prefix="aws_rds_", default_type="gauge").parse(make_fetch_result(tmp_path))

        names = [m.raw_name for m in result.metrics]
        assert names == ["aws_rds_ReadLatency", "aws_rds_WriteIOPS"]
        read_latency = result.metrics[0]
        assert read_latency.unit == "Seconds"
        assert read_latency.raw_type == "gauge"
        assert read_latency.description.startswith("The average amount of time")
        assert read_latency.line == 7
        assert read_latency.confidence == ConfidenceLevel.VENDOR_CLAIMED
        assert read_latency.extraction_method == ExtractionMethod.PATTERN_MATCH

    def test_invalid_names_are_partial_failures(self, tmp_path):
        """Test cells that are not metric names are reported, not emitted."""
        write_tree(tmp_path, {"rds.md": RDS_DOC})
        result = extractor().parse(make_fetch_result(tmp_path))

        assert len(result.partial_failures) == 1
        assert "Not A Metric" in result.partial_failures[0].reason
        assert result.partial_failures[0].line == 9

    def test_type_defaults_to_unknown(self, tmp_path):
        """Test rows without a type column and no default get 'unknown'."""
        write_tree(tmp_path, {"rds.md": RDS_DOC})
        result = extractor().parse(make_fetch_result(tmp_path))
        assert {m.raw_type for m in result.metrics} == {"unknown"}

    def test_type_column(self, tmp_path):
        """Test a type column overrides the default type."""
        doc = "| Name | Type | Help |\n|---|---|---|\n| jobs_total | counter | Jobs run |\n"
        write_tree(tmp_path, {"metrics.md": doc})
        result = extractor(default_type="gauge").parse(make_fetch_result(tmp_path))
        assert result.metrics[0].raw_type == "counter"
        assert result.metrics[0].description == "Jobs run"

    def test_confidence_capped_at_documented(self, tmp_path):
        """Test pattern-matched metrics are never more than Documented."""
        write_tree(tmp_path, {"rds.md": RDS_DOC})
        descriptor = make_descriptor(
            confidence=ConfidenceLevel.AUTHORITATIVE, method=ExtractionMethod.PATTERN_MATCH
        )
        result = PatternMatchExtractor(descriptor).parse(make_fetch_result(tmp_path))
        assert {m.confidence for m in result.metrics} == {ConfidenceLevel.DOCUMENTED}


class TestRegexProfiles:
    """Tests for constructor-call and custom patterns."""

    def test_constructor_calls(self, tmp_path):
        """Test constructor calls in arbitrary source files."""
        write_tree(tmp_path, {"src/metrics.rs": RUST_SOURCE})
        result = extractor(profile="constructor-call").parse(make_fetch_result(tmp_path))

        by_name = {m.raw_name: m for m in result.metrics}
        assert by_name["app_requests_total"].raw_type == "Counter"
        assert by_name["app_requests_total"].description == "Requests served"
        assert by_name["app_queue_depth"].raw_type == "Gauge"
        assert by_name["app_queue_depth"].line == 3

    def test_cancellation_between_files(self, tmp_path):
        """Test a set cancellation event ends the file walk."""
        write_tree(tmp_path, {"src/metrics.rs": RUST_SOURCE})
        cancelled = threading.Event()
        cancelled.set()
        result = extractor(profile="constructor-call").parse(make_fetch_result(tmp_path), cancelled=cancelled)
        assert result.metrics == []

    def test_custom_pattern(self, tmp_path):
        """Test configured regular expressions with named groups."""
        write_tree(tmp_path, {"metrics.txt": "metric jobs_failed type=counter unit=1 labels=queue,reason\n"})
        pattern = r"^metric (?P<name>\S+) type=(?P<type>\S+) unit=(?P<unit>\S+) labels=(?P<labels>\S+)$"
        result = extractor(patterns=[pattern], include=["*.txt"]).parse(make_fetch_result(tmp_path))

        metric = result.metrics[0]
        assert metric.raw_name == "jobs_failed"
        assert metric.raw_type == "counter"
        assert metric.unit == "1"
        assert metric.label_names == ["queue", "reason"]

    def test_pattern_without_name_group(self):
        """Test patterns must define a name group."""
        with pytest.raises(ConfigurationError, match="name"):
            extractor(patterns=[r"metric (\S+)"])

    def test_invalid_pattern(self):
        """Test regex syntax errors are configuration errors."""
        with pytest.raises(ConfigurationError, match="Invalid pattern"):
            extractor(patterns=[r"(?P<name>["])

    def test_unknown_profile(self):
        """Test unknown profiles are rejected up front."""
        with pytest.raises(ConfigurationError, match="profile"):
            extractor(profile="html")

    def test_factory_selects_pattern_extractor(self):
        """Test create_extractor returns a pattern extractor for PatternMatch."""
        descriptor = make_descriptor(method=ExtractionMethod.PATTERN_MATCH)
        assert isinstance(create_extractor(descriptor), PatternMatchExtractor)
