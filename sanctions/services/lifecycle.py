from __future__ import annotations

import logging
from asyncio import Lock
from collections import defaultdict
from datetime import datetime, timedelta, UTC
from typing import Dict, Iterable, List, Optional

from config import (
    AGREE_TEMPLATE_TITLE,
    DISAGREE_TEMPLATE_TITLE,
    MAX_BLOCK_PERIOD,
    VOTING_PERIOD_DAYS,
)
from sanctions.engine.markers import find_vote_marker
from sanctions.models import Sanction, SanctionStatus, TopicPost, UserRef, Vote
from sanctions.services.identity import build_sanction, load_sanction, parse_sanction_id
from sanctions.services.metrics import stats
from sanctions.services.notifications import is_sanction_bot, notify_proposed
from sanctions.services.tally import has_vote_right
from sanction_db import (
    get_overdue_sanctions,
    get_sanction_by_uuid,
    get_votes,
    store_sanction,
    update_sanction_status,
    upsert_vote,
)

logger = logging.getLogger(__name__)

# One lock per proposed sanction so concurrent viewers reconcile one at a time;
# a lock is dropped once its sanction leaves the proposed state
_sanction_locks: Dict[str, Lock] = defaultdict(Lock)


def is_expired(sanction: Sanction, now: Optional[datetime] = None) -> bool:
    """A sanction stops taking votes at its deadline, or once it has been decided."""
    if sanction.status != SanctionStatus.PROPOSED:
        return True
    now = now or datetime.now(UTC)
    return now >= sanction.voting_deadline


def scan_votes(sanction: Sanction, posts: Iterable[TopicPost]) -> Dict[str, Vote]:
    """
    Read the votes cast in a topic's posts, one per voter.

    Posts are taken in time order; a voter's later post replaces their earlier
    vote. Posts without a well-formed marker are ignored, as are posts by the
    target, by the sanction bot, and by users without vote right.
    """
    ordered = sorted(enumerate(posts), key=lambda item: (item[1].timestamp, item[0]))
    found: Dict[str, Vote] = {}

    for _, post in ordered:
        author = post.author
        if author.name_lower == sanction.target.name_lower:
            continue
        if is_sanction_bot(author):
            continue

        marker = find_vote_marker(
            post.content,
            AGREE_TEMPLATE_TITLE,
            DISAGREE_TEMPLATE_TITLE,
            MAX_BLOCK_PERIOD,
        )
        if marker is None:
            continue
        if not has_vote_right(author):
            logger.debug(f"Ignoring vote by {author.name}: no vote right")
            continue

        choice, period = marker
        found[author.name_lower] = Vote(
            voter=author,
            choice=choice,
            cast_at=post.timestamp,
            period=period,
        )
    return found


def _same_vote(a: Vote, b: Vote) -> bool:
    return (
        a.choice == b.choice
        and a.period == b.period
        and int(a.cast_at.timestamp()) == int(b.cast_at.timestamp())
    )


def _reload_votes(sanction: Sanction) -> None:
    row = get_sanction_by_uuid(sanction.id)
    if row is None:
        return
    fresh = build_sanction(row, get_votes(row["id"]))
    sanction.votes = fresh.votes
    sanction.status = fresh.status


async def check_new_votes(sanction: Sanction, posts: Iterable[TopicPost]) -> List[Vote]:
    """
    Reconcile the votes found in a topic with the recorded ones.

    Returns the votes this call recorded (new voters and changed votes).
    """
    if sanction.row_id is None:
        logger.warning(f"Sanction {sanction.id} has not been stored, skipping vote check")
        return []

    posts = list(posts)
    async with _sanction_locks[sanction.id]:
        _reload_votes(sanction)
        if sanction.status != SanctionStatus.PROPOSED:
            _sanction_locks.pop(sanction.id, None)
            return []

        stats["topics_scanned"] += 1
        recorded_by_voter = {v.voter.name_lower: v for v in sanction.votes}
        recorded: List[Vote] = []

        for key, vote in scan_votes(sanction, posts).items():
            previous = recorded_by_voter.get(key)
            if previous is not None and _same_vote(previous, vote):
                continue
            if upsert_vote(
                sanction_id=sanction.row_id,
                voter_name=vote.voter.name,
                voter_id=vote.voter.id,
                choice=vote.choice.value,
                period=vote.period,
                cast_at=vote.cast_at.timestamp(),
            ):
                recorded.append(vote)

        if recorded:
            stats["votes_recorded"] += len(recorded)
            logger.info(f"Sanction {sanction.id}: recorded {len(recorded)} new vote(s)")
            _reload_votes(sanction)

    return recorded


def propose(
    topic_id: str,
    target: UserRef,
    now: Optional[datetime] = None,
    agent: Optional[UserRef] = None,
) -> Optional[Sanction]:
    """
    Record a sanction proposed in the given topic and notify its target.

    A topic holds one sanction: proposing it again returns the stored sanction
    unchanged and sends no notification.
    """
    sanction_id = parse_sanction_id(topic_id)
    if sanction_id is None:
        logger.warning(f"Cannot propose a sanction in topic {topic_id!r}: not a topic id")
        return None

    if get_sanction_by_uuid(sanction_id) is not None:
        logger.info(f"Sanction {sanction_id} was already proposed")
        return load_sanction(sanction_id) or None

    now = now or datetime.now(UTC)
    deadline = now + timedelta(days=VOTING_PERIOD_DAYS)
    row_id = store_sanction(
        topic_uuid=sanction_id,
        target_name=target.name,
        target_id=target.id,
        proposed_at=now.timestamp(),
        voting_deadline=deadline.timestamp(),
    )
    if row_id is None:
        return None

    sanction = Sanction(
        id=sanction_id,
        target=target,
        proposed_at=now,
        voting_deadline=deadline,
        row_id=row_id,
    )
    stats["sanctions_proposed"] += 1
    notify_proposed(sanction, agent)
    return sanction


def _transition(sanction: Sanction, status: SanctionStatus) -> bool:
    if sanction.status != SanctionStatus.PROPOSED or sanction.row_id is None:
        return False
    if not update_sanction_status(sanction.row_id, status.value):
        return False
    sanction.status = status
    _sanction_locks.pop(sanction.id, None)
    return True


def mark_expired(sanction: Sanction) -> bool:
    if _transition(sanction, SanctionStatus.EXPIRED):
        stats["sanctions_expired"] += 1
        return True
    return False


def mark_enacted(sanction: Sanction) -> bool:
    return _transition(sanction, SanctionStatus.ENACTED)


def expire_overdue(now: Optional[datetime] = None) -> int:
    """Expire every proposed sanction past its deadline. Returns how many were expired."""
    now = now or datetime.now(UTC)
    expired = 0
    for row in get_overdue_sanctions(now.timestamp()):
        if update_sanction_status(row["id"], SanctionStatus.EXPIRED.value):
            _sanction_locks.pop(row["topic_uuid"], None)
            expired += 1
    if expired:
        stats["sanctions_expired"] += expired
        logger.info(f"Expired {expired} sanction(s)")
    return expired
