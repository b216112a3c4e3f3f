"""
Integration tests for the statetrail migration pipeline.

The SQLite tests run against file-backed databases in a temporary
directory. The PostgreSQL tests need a real instance, provisioned via
testcontainers.

Tests are skipped automatically if required infrastructure is not available.

Run integration tests:
    pytest tests/integration/ -v

Run only PostgreSQL tests:
    pytest tests/integration/ -v -m postgres

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
