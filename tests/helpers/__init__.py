"""Test helper utilities for the notification delivery engine tests."""

from .factories import STORED_PAYLOADS, VALID_PAYLOADS, make_engine, make_record
from .fakes import (
    DEFAULT_START,
    FakeClock,
    FakeSortedSetClient,
    RecordingEventPublisher,
    ScriptedGateway,
)

__all__ = [
    "DEFAULT_START",
    "FakeClock",
    "FakeSortedSetClient",
    "RecordingEventPublisher",
    "ScriptedGateway",
    "STORED_PAYLOADS",
    "VALID_PAYLOADS",
    "make_engine",
    "make_record",
]
