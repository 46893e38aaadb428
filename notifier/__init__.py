"""Notification delivery engine for the exam administration platform."""

__version__ = "1.0.0"
