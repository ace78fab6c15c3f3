"""
Test fixtures for lexisync.

Provides reusable test data and in-memory service doubles.
"""

from .translation_fixtures import (
    TranslationFixtures,
    SSEFixtures,
    wait_for_condition,
)
from .api_fixtures import (
    FakeTranslationServer,
    FakeDeviceFlowApi,
)

__all__ = [
    "TranslationFixtures",
    "SSEFixtures",
    "wait_for_condition",
    "FakeTranslationServer",
    "FakeDeviceFlowApi",
]
