from __future__ import annotations

import logging
from datetime import datetime, timedelta, UTC
from typing import Callable, Dict, Iterable, Optional

from config import VOTE_MIN_ACCOUNT_AGE_DAYS, VOTE_MIN_EDIT_COUNT
from sanctions.models import Sanction, Tally, UserRef, Vote, VoteChoice

logger = logging.getLogger(__name__)

VoteRightPredicate = Callable[[UserRef], bool]

_vote_right_predicate: Optional[VoteRightPredicate] = None


def set_vote_right_predicate(predicate: Optional[VoteRightPredicate]) -> None:
    """Let the platform decide who may vote. Pass None to restore the default rule."""
    global _vote_right_predicate
    _vote_right_predicate = predicate


def default_vote_right(user: UserRef, now: Optional[datetime] = None) -> bool:
    """Unblocked accounts with enough edits and tenure may vote."""
    if user.blocked:
        return False
    if user.edit_count < VOTE_MIN_EDIT_COUNT:
        return False
    # Accounts older than registration logging report no date
    if user.registered_at is None:
        return True
    registered_at = user.registered_at
    if registered_at.tzinfo is None:
        registered_at = registered_at.replace(tzinfo=UTC)
    now = now or datetime.now(UTC)
    return now - registered_at >= timedelta(days=VOTE_MIN_ACCOUNT_AGE_DAYS)


def has_vote_right(user: Optional[UserRef]) -> bool:
    if user is None:
        return False
    if _vote_right_predicate is not None:
        return bool(_vote_right_predicate(user))
    return default_vote_right(user)


def latest_votes(votes: Iterable[Vote]) -> Dict[str, Vote]:
    """Keep each voter's most recent vote; on equal times the later entry wins."""
    latest: Dict[str, Vote] = {}
    for vote in votes:
        key = vote.voter.name_lower
        current = latest.get(key)
        if current is None or vote.cast_at >= current.cast_at:
            latest[key] = vote
    return latest


def tally(sanction: Sanction) -> Tally:
    agree = 0
    disagree = 0
    for vote in latest_votes(sanction.votes).values():
        if vote.choice == VoteChoice.AGREE:
            agree += 1
        else:
            disagree += 1
    return Tally(agree=agree, disagree=disagree)
