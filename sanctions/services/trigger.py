from __future__ import annotations

import logging
from datetime import datetime, UTC
from typing import Iterable, List, Optional

from sanctions.models import Sanction, SanctionStatus, TopicPost, Vote
from sanctions.services.lifecycle import check_new_votes, is_expired, mark_expired
from sanctions.services.notifications import notify_vote_updated

logger = logging.getLogger(__name__)


async def on_topic_viewed(
    sanction: Sanction,
    posts: Iterable[TopicPost],
    now: Optional[datetime] = None,
) -> List[Vote]:
    """
    Bring a sanction up to date when its topic is viewed.

    While voting is open, new votes are recorded and the target and prior
    voters are notified. Once the deadline has passed the sanction is marked
    expired; what follows from the outcome is decided elsewhere.
    """
    now = now or datetime.now(UTC)

    if is_expired(sanction, now):
        if sanction.status == SanctionStatus.PROPOSED:
            mark_expired(sanction)
        return []

    recorded = await check_new_votes(sanction, posts)
    if recorded:
        latest = max(recorded, key=lambda v: v.cast_at)
        notify_vote_updated(
            sanction,
            [v.voter for v in recorded],
            agent=latest.voter,
        )
    return recorded
