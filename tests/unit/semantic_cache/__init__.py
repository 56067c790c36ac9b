"""
Semantic Cache Tests

Unit tests for semantic cache functionality including:
- Similarity scoring and candidate scans
- Entry storage and owner scoping
- Ranking and adaptive thresholds
- Embedding generation, retry and fallback
- Maintenance, analytics and the cache facade
"""
