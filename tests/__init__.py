"""
Tests Package - Unit and integration tests for kbeval.
======================================================

Test modules:
- test_metrics: Per-query metric tests
- test_aggregator: Macro/micro aggregation tests
- test_lifecycle: Task state machine tests
- test_orchestrator: Task operations, pipeline runs and concurrency
- test_collaborators: In-memory stores and replay retriever
- test_datasets: Dataset and run file loading
- test_config: Settings, logging and schema tests
- test_cli: Typer command tests

Run tests with:
    pytest tests/
    pytest tests/ -m "not concurrency"
"""
