"""Trust score computation.

The trust score is a 0-100 integer derived from three inputs:

* the average rating of the agency's *approved* reviews, worth up to
  50 points (``average / 5 * 50``);
* the number of services offered, worth 5 points each and saturating at
  30 points (six services);
* the verification flag, worth 20 points.

Everything here is pure: no I/O and no hidden state, so identical
inputs always give identical scores regardless of call order.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

RATING_WEIGHT = 50
SERVICE_POINTS = 5
SERVICES_CAP = 30
VERIFICATION_POINTS = 20
MAX_RATING = 5


@dataclass(frozen=True)
class TrustScoreMetrics:
    """Inputs and result of one trust score computation."""
    average_rating: float
    approved_review_count: int
    service_count: int
    is_verified: bool
    score: int

    def as_dict(self) -> dict:
        return {
            "average_rating": self.average_rating,
            "approved_review_count": self.approved_review_count,
            "service_count": self.service_count,
            "is_verified": self.is_verified,
            "score": self.score,
            "level": trust_level(self.score),
        }


def approved_ratings(reviews: Iterable[Mapping]) -> list[int]:
    """Ratings of the reviews whose status is ``approved``."""
    return [review["rating"] for review in reviews if review.get("status") == "approved"]


def average_rating(ratings: Sequence[int]) -> float:
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def calculate_trust_score(ratings: Sequence[int], service_count: int, is_verified: bool) -> int:
    """Compute the trust score from approved ratings, service count and verification.

    Parameters
    ----------
    ratings: Sequence[int]
        Ratings (1-5) of the approved reviews only.
    service_count: int
        Number of services the agency offers.
    is_verified: bool
        Whether the agency has been verified.

    Returns
    -------
    int
        The score, rounded half-up and clamped to ``[0, 100]``.
    """
    rating_component = average_rating(ratings) * RATING_WEIGHT / MAX_RATING
    services_component = min(max(service_count, 0) * SERVICE_POINTS, SERVICES_CAP)
    verification_component = VERIFICATION_POINTS if is_verified else 0
    total = rating_component + services_component + verification_component
    # half-up, not banker's rounding
    score = math.floor(total + 0.5)
    return max(0, min(100, score))


def compute_metrics(reviews: Iterable[Mapping], service_count: int, is_verified: bool) -> TrustScoreMetrics:
    """Build the score breakdown for a set of reviews of any status."""
    ratings = approved_ratings(reviews)
    return TrustScoreMetrics(
        average_rating=average_rating(ratings),
        approved_review_count=len(ratings),
        service_count=service_count,
        is_verified=bool(is_verified),
        score=calculate_trust_score(ratings, service_count, bool(is_verified)),
    )


def trust_level(score: int) -> str:
    """Bucket a score into ``high``, ``moderate`` or ``low`` trust."""
    if score >= 80:
        return "high"
    if score >= 60:
        return "moderate"
    return "low"
