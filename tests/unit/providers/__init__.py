"""Embedding client tests."""
