"""
dustbin test suite.

Tests are organized by layer:
    tests/unit/         Unit tests (temporary SQLite ledgers, fake clocks, stubbed tools)

Run all tests:
    pytest
"""
