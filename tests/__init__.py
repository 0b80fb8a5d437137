"""calbridge Test Suite

Test organization:
- unit/: Unit tests for individual modules
  - core/: datetime utilities, models, errors, config, recurrence
  - providers/: Google, Microsoft Graph and Exchange adapters, registry
  - services/: calendar orchestration, free/busy, conflicts, sync
  - test_cli.py: command dispatch

Running tests:
    # All tests
    pytest

    # Specific area
    pytest tests/unit/services/

    # With coverage
    pytest --cov=calbridge --cov-report=term-missing
"""
