"""Unit tests for semcache."""
