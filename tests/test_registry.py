"""Tests for the source registry and descriptors."""

import pytest
from factories import make_descriptor
from pydantic import ValidationError

from metricatlas.core.errors import DuplicateSourceError
from metricatlas.domain.models import ConfidenceLevel, SourceCategory
from metricatlas.sources import SourceRegistry


class TestSourceDescriptor:
    """Tests for descriptor validation."""

    def test_blank_name_rejected(self):
        """Test names must not be blank."""
        with pytest.raises(ValidationError):
            make_descriptor("  ")

    def test_frozen(self):
        """Test descriptors cannot be mutated after creation."""
        descriptor = make_descriptor()
        with pytest.raises(ValidationError):
            descriptor.name = "other"

    def test_name_is_stripped(self):
        """Test surrounding whitespace is removed from names."""
        assert make_descriptor(" node-exporter ").name == "node-exporter"


class TestConfidenceLevel:
    """Tests for confidence ordering."""

    def test_cap(self):
        """Test cap never raises confidence above the ceiling."""
        assert ConfidenceLevel.AUTHORITATIVE.cap(ConfidenceLevel.DOCUMENTED) == ConfidenceLevel.DOCUMENTED
        assert ConfidenceLevel.VENDOR_CLAIMED.cap(ConfidenceLevel.DOCUMENTED) == ConfidenceLevel.VENDOR_CLAIMED

    def test_rank_order(self):
        """Test ranks follow trust order."""
        ranks = [level.rank for level in ConfidenceLevel]
        assert ranks == sorted(ranks, reverse=True)


class TestSourceRegistry:
    """Tests for SourceRegistry."""

    def test_register_and_get(self):
        """Test a registered descriptor is returned by name."""
        registry = SourceRegistry()
        descriptor = make_descriptor()
        registry.register(descriptor)
        assert registry.get("node-exporter") == descriptor
        assert "node-exporter" in registry
        assert len(registry) == 1

    def test_get_unknown(self):
        """Test unknown names return None."""
        assert SourceRegistry().get("missing") is None

    def test_duplicate_rejected(self):
        """Test registering a name twice fails and keeps the first entry."""
        first = make_descriptor()
        registry = SourceRegistry([first])
        with pytest.raises(DuplicateSourceError):
            registry.register(make_descriptor(location="https://example.com/fork"))
        assert registry.get("node-exporter") == first

    def test_list_filters_by_category(self):
        """Test listing by category."""
        registry = SourceRegistry(
            [
                make_descriptor("node-exporter"),
                make_descriptor("rds-docs", category=SourceCategory.CLOUD_METRICS),
            ]
        )
        assert [d.name for d in registry.list(SourceCategory.CLOUD_METRICS)] == ["rds-docs"]
        assert [d.name for d in registry.list()] == ["node-exporter", "rds-docs"]

    def test_listing_is_restartable(self):
        """Test a listing can be iterated more than once and sees new entries."""
        registry = SourceRegistry([make_descriptor("a")])
        listing = registry.list()
        assert [d.name for d in listing] == ["a"]
        registry.register(make_descriptor("b"))
        assert [d.name for d in listing] == ["a", "b"]
