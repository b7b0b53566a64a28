"""Reduction of pull request reviews to a QA track and a dev track status."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AbstractSet, Dict, List, Sequence, Tuple

from .models import Review, ReviewStatus, ReviewStatuses

DECISIVE_STATES: Dict[str, ReviewStatus] = {
    "APPROVED": ReviewStatus.APPROVED,
    "CHANGES_REQUESTED": ReviewStatus.CHANGES_REQUESTED,
}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def split_reviews(
    reviews: Sequence[Review],
    designated_reviewers: AbstractSet[str],
) -> Tuple[List[Review], List[Review]]:
    """Partition reviews into ``(qa_reviews, dev_reviews)`` by reviewer login."""
    qa_reviews: List[Review] = []
    dev_reviews: List[Review] = []

    for review in reviews:
        if review.reviewer in designated_reviewers:
            qa_reviews.append(review)
        else:
            dev_reviews.append(review)

    return qa_reviews, dev_reviews


def latest_review_status(reviews: Sequence[Review]) -> ReviewStatus:
    """Return the most recent decisive state of a review track.

    Comment-only, dismissed and pending reviews never change the status; with
    no decisive review the track is ``PENDING``.
    """
    for review in reversed(reviews):
        status = DECISIVE_STATES.get(review.state.upper())
        if status is not None:
            return status
    return ReviewStatus.PENDING


def _chronological(reviews: Sequence[Review]) -> List[Review]:
    # Stable sort: API order breaks ties and positions undated reviews first.
    return sorted(reviews, key=lambda review: review.submitted_at or _EPOCH)


def classify_reviews(
    reviews: Sequence[Review],
    designated_reviewers: AbstractSet[str],
) -> ReviewStatuses:
    """Classify reviews into the designated-reviewer (QA) and general (dev) track statuses."""
    qa_reviews, dev_reviews = split_reviews(_chronological(reviews), designated_reviewers)
    return ReviewStatuses(
        qa=latest_review_status(qa_reviews),
        dev=latest_review_status(dev_reviews),
    )
