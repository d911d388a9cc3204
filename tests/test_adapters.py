"""Tests for config-driven source adapters."""

import pytest
from factories import write_tree

from metricatlas.adapters import DescriptorAdapter, build_adapter, build_adapters, fetch_options_for
from metricatlas.config.settings import Settings
from metricatlas.config.sources import SourceConfig, SourcesConfig
from metricatlas.core.errors import ConfigurationError
from metricatlas.domain.models import (
    ConfidenceLevel,
    ExtractionMethod,
    InstrumentType,
    RunMode,
    RunStatus,
    SemanticConventionEntry,
    SourceCategory,
)
from metricatlas.enrichment import SemanticConventionCatalog
from metricatlas.extractors import PatternMatchExtractor, StructuredMetadataExtractor
from metricatlas.fetch import LocalFetcher
from metricatlas.orchestration import Orchestrator

RECEIVER = """\
type: redis
metrics:
  redis.clients.connected:
    description: Number of client connections.
    unit: "{client}"
    sum:
      value_type: int
      monotonic: false
  redis.commands.processed:
    description: Total number of commands processed by the server.
    unit: "{command}"
    sum:
      value_type: int
      monotonic: true
"""

EXPORTER = """\
# Exported metrics

| Metric | Type | Description | Labels |
| --- | --- | --- | --- |
| `exporter_uptime_seconds` | gauge | Time since the exporter started. | instance |
"""


def sources_config(root) -> SourcesConfig:
    return SourcesConfig.from_dict(
        {
            "defaults": {"fetcher": "local"},
            "sources": [
                {
                    "name": "redis-receiver",
                    "category": "collector-receiver",
                    "repository": str(root / "receiver"),
                    "confidence": "Authoritative",
                    "extraction_method": "StructuredMetadata",
                },
                {
                    "name": "uptime-exporter",
                    "category": "exporter",
                    "repository": str(root / "exporter"),
                    "confidence": "Documented",
                    "extraction_method": "PatternMatch",
                    "run_mode": "full-replace",
                    "ref": "v1.2.0",
                    "timeout": 30,
                },
            ],
        },
        origin="test",
    )


class TestBuildAdapters:
    """Tests for building adapters from a sources config."""

    def test_adapters_follow_config(self, tmp_path):
        """Test each source gets the fetcher and extractor its config names."""
        adapters = build_adapters(sources_config(tmp_path), Settings())

        assert [a.name for a in adapters] == ["redis-receiver", "uptime-exporter"]
        receiver, exporter = adapters
        assert isinstance(receiver, DescriptorAdapter)
        assert isinstance(receiver.fetcher, LocalFetcher)
        assert isinstance(receiver.extractor, StructuredMetadataExtractor)
        assert isinstance(exporter.extractor, PatternMatchExtractor)
        assert receiver.run_mode == RunMode.ADDITIVE
        assert exporter.run_mode == RunMode.FULL_REPLACE
        assert exporter.confidence == ConfidenceLevel.DOCUMENTED

    def test_fetch_options_fall_back_to_settings(self, tmp_path):
        """Test unset per-source fetch options come from settings."""
        config = sources_config(tmp_path)
        settings = Settings(default_ref="trunk", fetch_timeout_seconds=90, fetch_max_attempts=5)

        receiver = fetch_options_for(config.sources[0], settings)
        exporter = fetch_options_for(config.sources[1], settings)

        assert (receiver.ref, receiver.timeout_seconds, receiver.max_attempts) == ("trunk", 90, 5)
        assert (exporter.ref, exporter.timeout_seconds) == ("v1.2.0", 30)

    def test_invalid_descriptor_is_rejected(self):
        """Test a blank repository location fails when the adapter is built."""
        source = SourceConfig(
            name="blank",
            category=SourceCategory.OTHER,
            repository="  ",
            confidence=ConfidenceLevel.DERIVED,
            extraction_method=ExtractionMethod.PATTERN_MATCH,
        )
        with pytest.raises(ConfigurationError, match="Invalid source descriptor"):
            build_adapter(source, Settings())


class TestEndToEndRun:
    """Tests for a full run over local source trees."""

    @pytest.mark.asyncio
    async def test_run_over_local_sources(self, tmp_path, store):
        """Test metrics from two local trees are extracted, persisted and enriched."""
        write_tree(
            tmp_path,
            {
                "receiver/receiver/redisreceiver/metadata.yaml": RECEIVER,
                "exporter/docs/metrics.md": EXPORTER,
            },
        )
        adapters = build_adapters(sources_config(tmp_path), Settings())
        catalog = SemanticConventionCatalog(
            [SemanticConventionEntry(convention_name="redis.clients.connected")]
        )
        engine = Orchestrator(adapters, store, catalog_loader=lambda: catalog, max_workers=2)

        report = await engine.run_all()

        assert report.status == RunStatus.COMPLETE
        assert await store.count("redis-receiver") == 2
        assert await store.count("uptime-exporter") == 1

        receiver_page = await store.search("redis")
        by_name = {m.canonical_name: m for m in receiver_page.items}
        connected = by_name["redis.clients.connected"]
        assert connected.instrument_type == InstrumentType.GAUGE
        assert connected.confidence == ConfidenceLevel.AUTHORITATIVE
        assert connected.semantic_convention_match.value == "Exact"
        assert by_name["redis.commands.processed"].instrument_type == InstrumentType.COUNTER

        uptime = (await store.search("uptime")).items[0]
        assert uptime.category == SourceCategory.EXPORTER
        assert uptime.attributes == ("instance",)
        assert len(uptime.commit_hash) == 40

    @pytest.mark.asyncio
    async def test_missing_local_directory_fails_only_that_source(self, tmp_path, store):
        """Test a missing local tree fails its source while the other succeeds."""
        write_tree(tmp_path, {"receiver/metadata.yaml": RECEIVER})
        adapters = build_adapters(sources_config(tmp_path), Settings())

        report = await Orchestrator(adapters, store, max_workers=2).run_all()

        assert report.status == RunStatus.PARTIAL
        assert report.failed_sources == ["uptime-exporter"]
        assert await store.count("redis-receiver") == 2
