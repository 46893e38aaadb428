"""Scheduler module for periodic dispatch and reconciliation."""

from .service import DeliveryScheduler

__all__ = ["DeliveryScheduler"]
