"""Shared models, resources and database helpers for the test suite."""
