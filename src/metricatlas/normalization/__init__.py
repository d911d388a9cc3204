"""Normalization of raw metric definitions into the canonical schema."""

from metricatlas.normalization.normalizer import Normalizer, metric_id, snake_case
from metricatlas.normalization.policy import NormalizationPolicy

__all__ = ["NormalizationPolicy", "Normalizer", "metric_id", "snake_case"]
