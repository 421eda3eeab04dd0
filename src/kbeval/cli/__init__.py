"""
CLI Module - Command-line interface for kbeval.
===============================================

Provides CLI commands for:
- Scoring a single query
- Evaluating a recorded retrieval run against a dataset
- Showing configuration

Usage:
    kbeval --help
    kbeval score -g 1,2,3 -r 1,4,2
    kbeval eval data/dataset.json data/run.json -o results.json

Components:
- main: Typer CLI application
"""

from kbeval.cli.main import app, cli

__all__ = ["app", "cli"]
