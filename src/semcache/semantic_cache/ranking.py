"""
Semantic Cache Candidate Ranking

Blends similarity with recency, usage and query-length proximity:

    ranking   = 0.7 * similarity + 0.3 * auxiliary
    auxiliary = 0.3 * recency + 0.4 * usage + 0.3 * length_similarity

    recency           = max(0, 1 - age_days / 30)     (age since last access)
    usage             = min(1, access_count / 10)
    length_similarity = 1 - |len(q) - len(c)| / max(len(q), len(c))

Similarity alone decides acceptance: a candidate below the adaptive
threshold is never returned no matter how well it ranks.
"""

from collections.abc import Sequence
from datetime import datetime

from .models import CacheEntry, CandidateMatch, utc_now
from .statistics import AdaptiveThreshold

SIMILARITY_WEIGHT = 0.7
AUXILIARY_WEIGHT = 0.3

RECENCY_WEIGHT = 0.3
USAGE_WEIGHT = 0.4
LENGTH_WEIGHT = 0.3

RECENCY_HORIZON_DAYS = 30.0
USAGE_SATURATION = 10.0

SECONDS_PER_DAY = 86400.0


def recency_score(last_accessed_at: datetime, now: datetime) -> float:
    age_days = max(0.0, (now - last_accessed_at).total_seconds() / SECONDS_PER_DAY)
    return max(0.0, 1.0 - age_days / RECENCY_HORIZON_DAYS)


def usage_score(access_count: int) -> float:
    return min(1.0, access_count / USAGE_SATURATION)


def length_similarity(query_text: str, candidate_text: str) -> float:
    longest = max(len(query_text), len(candidate_text))
    if longest == 0:
        return 1.0
    return 1.0 - abs(len(query_text) - len(candidate_text)) / longest


class CandidateRanker:
    """Ranks similarity matches and picks the one to serve."""

    def __init__(self, threshold: AdaptiveThreshold, fallback_penalty: float = 0.0) -> None:
        """
        Args:
            threshold: Shared adaptive similarity threshold
            fallback_penalty: Fraction removed from the ranking score of
                entries whose embedding is a deterministic fallback
        """
        self.threshold = threshold
        self.fallback_penalty = fallback_penalty

    def ranking_score(self, query_text: str, entry: CacheEntry, similarity: float, now: datetime) -> float:
        access_count, last_accessed_at = entry.access_snapshot()
        auxiliary = (
            RECENCY_WEIGHT * recency_score(last_accessed_at, now)
            + USAGE_WEIGHT * usage_score(access_count)
            + LENGTH_WEIGHT * length_similarity(query_text, entry.query_text)
        )
        score = SIMILARITY_WEIGHT * similarity + AUXILIARY_WEIGHT * auxiliary

        if self.fallback_penalty and entry.metadata.is_fallback_embedding:
            score *= 1.0 - self.fallback_penalty
        return score

    def rank(
        self,
        query_text: str,
        candidates: Sequence[CandidateMatch],
        now: datetime | None = None,
    ) -> list[CandidateMatch]:
        """
        Score and order candidates.

        Order: ranking score desc, then access_count desc, then id asc.
        """
        now = now or utc_now()
        for candidate in candidates:
            candidate.ranking_score = self.ranking_score(
                query_text, candidate.entry, candidate.similarity_score, now
            )

        return sorted(
            candidates,
            key=lambda c: (-c.ranking_score, -c.entry.access_count, c.entry.id),
        )

    def select_best(
        self,
        query_text: str,
        candidates: Sequence[CandidateMatch],
        now: datetime | None = None,
    ) -> CandidateMatch | None:
        """Best-ranked candidate whose similarity meets the current threshold."""
        cutoff = self.threshold.value
        qualifying = [c for c in candidates if c.similarity_score >= cutoff]
        if not qualifying:
            return None
        return self.rank(query_text, qualifying, now)[0]
