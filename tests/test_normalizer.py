"""Tests for name and type normalization."""

import random
from dataclasses import replace
from datetime import datetime, timezone

import pytest
from factories import make_raw

from metricatlas.core.errors import ConfigurationError, NormalizationError
from metricatlas.domain.models import InstrumentType, SemanticMatch, SourceCategory
from metricatlas.normalization.normalizer import Normalizer, metric_id, snake_case
from metricatlas.normalization.policy import NormalizationPolicy


class TestSnakeCase:
    """Tests for snake_case."""

    @pytest.mark.parametrize(
        ("token", "expected"),
        [
            ("ReadLatency", "read_latency"),
            ("CPUUtilization", "cpu_utilization"),
            ("already_snake", "already_snake"),
            ("bytes-in", "bytes_in"),
        ],
    )
    def test_conversion(self, token, expected):
        """Test camel, pascal and acronym tokens."""
        assert snake_case(token) == expected


class TestPolicy:
    """Tests for NormalizationPolicy."""

    def test_instrument_types(self):
        """Test raw type tokens from every extractor map onto instrument types."""
        policy = NormalizationPolicy.default()
        assert policy.instrument_type("monotonic_sum") == InstrumentType.COUNTER
        assert policy.instrument_type("prometheus.CounterValue") == InstrumentType.COUNTER
        assert policy.instrument_type("updowncounter") == InstrumentType.GAUGE
        assert policy.instrument_type("HistogramVec") == InstrumentType.HISTOGRAM
        assert policy.instrument_type("Summary") == InstrumentType.SUMMARY
        assert policy.instrument_type("untyped") == InstrumentType.UNKNOWN
        assert policy.instrument_type(None) == InstrumentType.UNKNOWN

    def test_from_dict_extends_tables(self):
        """Test YAML overrides add types and suffixes."""
        policy = NormalizationPolicy.from_dict(
            {
                "types": {"meter": "Counter"},
                "suffixes": {"hours": ["h"]},
                "type_suffixes": {"count": "Counter"},
            }
        )
        assert policy.instrument_type("Meter") == InstrumentType.COUNTER
        assert policy.strippable("hours", InstrumentType.GAUGE, "h")
        assert policy.strippable("count", InstrumentType.COUNTER, None)

    def test_from_dict_unknown_type(self):
        """Test unknown target types are rejected."""
        with pytest.raises(ConfigurationError):
            NormalizationPolicy.from_dict({"types": {"meter": "Timer"}})

    def test_load_file(self, tmp_path):
        """Test loading overrides from a YAML file."""
        path = tmp_path / "normalization.yaml"
        path.write_text("types:\n  meter: Gauge\n")
        assert NormalizationPolicy.load(path).instrument_type("meter") == InstrumentType.GAUGE

    def test_load_missing_file(self, tmp_path):
        """Test a missing policy file is a configuration error."""
        with pytest.raises(ConfigurationError):
            NormalizationPolicy.load(tmp_path / "missing.yaml")


class TestNormalizer:
    """Tests for Normalizer."""

    def setup_method(self):
        self.normalizer = Normalizer()

    def test_cloud_metric_name(self):
        """Test vendor names are split and snake-cased."""
        metric = self.normalizer.normalize(make_raw("aws_rds_ReadLatency", "gauge"))
        assert metric.canonical_name == "aws.rds.read_latency"
        assert metric.instrument_type == InstrumentType.GAUGE

    def test_counter_total_suffix_dropped(self):
        """Test _total is dropped from counters only."""
        assert self.normalizer.normalize(make_raw("http_requests_total")).canonical_name == "http.requests"
        gauge = self.normalizer.normalize(make_raw("queue_total", "gauge"))
        assert gauge.canonical_name == "queue.total"

    def test_unit_suffix_dropped_when_unit_matches(self):
        """Test unit suffixes are dropped only when the unit confirms them."""
        with_unit = make_raw("http_request_duration_seconds", "histogram", unit="s")
        without_unit = make_raw("http_request_duration_seconds", "histogram")
        assert self.normalizer.normalize(with_unit).canonical_name == "http.request.duration"
        assert self.normalizer.normalize(without_unit).canonical_name == "http.request.duration.seconds"

    def test_dotted_names_keep_segments(self):
        """Test names already in dotted form keep their segments."""
        metric = self.normalizer.normalize(make_raw("system.cpu.time", "monotonic_sum", unit="s"))
        assert metric.canonical_name == "system.cpu.time"
        assert metric.instrument_type == InstrumentType.COUNTER

    def test_attributes_sorted_and_deduplicated(self):
        """Test label names become sorted, unique attributes."""
        metric = self.normalizer.normalize(make_raw(label_names=["Method", "code", "method", " "]))
        assert metric.attributes == ("code", "method")

    def test_provenance_preserved(self):
        """Test source, file, commit and confidence survive normalization."""
        raw = make_raw(description="  Requests served.  ")
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        metric = self.normalizer.normalize(raw, category=SourceCategory.EXPORTER, extracted_at=at)
        assert metric.source_name == raw.source_name
        assert metric.file_path == raw.file_path
        assert metric.commit_hash == raw.commit_hash
        assert metric.confidence == raw.confidence
        assert metric.extraction_method == raw.extraction_method
        assert metric.category == SourceCategory.EXPORTER
        assert metric.extracted_at == at
        assert metric.description == "Requests served."
        assert metric.semantic_convention_match == SemanticMatch.NONE

    def test_id_is_stable(self):
        """Test ids derive from source, canonical name and component."""
        first = self.normalizer.normalize(make_raw())
        second = self.normalizer.normalize(make_raw(description="changed"))
        assert first.id == second.id == metric_id("node-exporter", "http.requests", "collector")
        other_component = self.normalizer.normalize(make_raw(component="other"))
        assert other_component.id != first.id

    def test_missing_commit_rejected(self):
        """Test metrics without provenance are rejected."""
        with pytest.raises(NormalizationError, match="commit_hash"):
            self.normalizer.normalize(make_raw(commit_hash=""))

    def test_empty_name_rejected(self):
        """Test names that normalize to nothing are rejected."""
        with pytest.raises(NormalizationError, match="empty"):
            self.normalizer.normalize(make_raw("___"))

    def test_blank_unit_is_none(self):
        """Test blank units are stored as None."""
        assert self.normalizer.normalize(make_raw(unit="  ")).unit is None

    def test_results_independent_of_order(self):
        """Test core fields are identical whatever order metrics and labels arrive in."""
        raws = [
            make_raw("http_requests_total", label_names=["method", "code"]),
            make_raw("aws_rds_ReadLatency", "gauge", label_names=["DBInstanceIdentifier"]),
            make_raw("http_request_duration_seconds", "histogram", unit="s", label_names=["route", "method"]),
            make_raw("system.cpu.time", "monotonic_sum", unit="s", label_names=["cpu", "state"]),
        ]
        shuffled = [
            replace(raw, label_names=list(reversed(raw.label_names)) + raw.label_names[:1])
            for raw in raws
        ]
        random.Random(7).shuffle(shuffled)
        core = {"canonical_name", "instrument_type", "attributes"}

        first = {raw.raw_name: self.normalizer.normalize(raw).model_dump_json(include=core) for raw in raws}
        second = {raw.raw_name: Normalizer().normalize(raw).model_dump_json(include=core) for raw in shuffled}

        assert first == second
