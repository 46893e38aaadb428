"""Delivery statistics."""

from .aggregator import StatsAggregator, success_rate
from .models import DeliveryStats, FailureSummary

__all__ = ["DeliveryStats", "FailureSummary", "StatsAggregator", "success_rate"]
