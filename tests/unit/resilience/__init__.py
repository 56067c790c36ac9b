"""Retry and error classification tests."""
