"""Metrics persistence and structured logging tests."""
