"""
Test Suite

Contains unit tests for the engine, providers, service and HTTP surface.

Structure:
- tests/unit/: Tests for individual components with network calls replaced
  by monkeypatched ``_get`` methods and in-test provider doubles

Uses pytest with pytest-asyncio for testing async functionality.
"""
