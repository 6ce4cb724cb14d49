from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Optional

from config import SANCTIONS_BOT_NAME
from sanctions.models import NotificationEvent, Sanction, UserRef
from sanctions.services.metrics import stats

logger = logging.getLogger(__name__)

CATEGORY_AGAINST_ME = "sanctions-against-me"
EVENT_PROPOSED = "sanctions-proposed"
EVENT_VOTE_UPDATED = "sanctions-vote-updated"

BotPredicate = Callable[[UserRef], bool]
Deliver = Callable[[NotificationEvent], None]

_bot_predicate: Optional[BotPredicate] = None
_deliver: Optional[Deliver] = None


def set_bot_predicate(predicate: Optional[BotPredicate]) -> None:
    """Override how the sanction bot is recognised. None restores the name check."""
    global _bot_predicate
    _bot_predicate = predicate


def set_deliver(deliver: Optional[Deliver]) -> None:
    """Hand events to the platform's notification pipeline."""
    global _deliver
    _deliver = deliver


def is_sanction_bot(user: Optional[UserRef]) -> bool:
    if user is None:
        return False
    if _bot_predicate is not None:
        return bool(_bot_predicate(user))
    return bool(SANCTIONS_BOT_NAME) and user.name == SANCTIONS_BOT_NAME


def define_events(notifs: Dict, categories: Dict, icons: Dict) -> None:
    """Register this extension's notification categories and event types."""
    categories[CATEGORY_AGAINST_ME] = {
        "priority": 1,
        "no-dismiss": ["web"],
        "tooltip": "sanctions-pref-tooltip-sanctions-against-me",
    }

    locator = [["locateFromEventExtra", ["target-id"]]]
    notifs[EVENT_PROPOSED] = {
        "category": CATEGORY_AGAINST_ME,
        "group": "negative",
        "section": "alert",
        "user-locators": locator,
    }
    notifs[EVENT_VOTE_UPDATED] = {
        "category": CATEGORY_AGAINST_ME,
        "group": "neutral",
        "section": "message",
        "user-locators": [["locateFromEventExtra", ["target-id", "voter-ids"]]],
    }


def should_insert(event: NotificationEvent) -> bool:
    """Events caused by the sanction bot are never inserted."""
    if event.agent is None:
        return True
    if is_sanction_bot(event.agent):
        stats["notifications_suppressed"] += 1
        logger.debug(f"Suppressed {event.type} notification from the sanction bot")
        return False
    return True


def emit(event: NotificationEvent) -> bool:
    """Send an event unless it is suppressed. Returns True if it was handed off."""
    if not should_insert(event):
        return False
    if _deliver is None:
        logger.info(f"Notification {event.type}: {event.extra}")
    else:
        _deliver(event)
    stats["notifications_sent"] += 1
    return True


def notify_proposed(sanction: Sanction, agent: Optional[UserRef]) -> bool:
    return emit(NotificationEvent(
        type=EVENT_PROPOSED,
        agent=agent,
        extra={
            "target-id": sanction.target.id,
            "target-name": sanction.target.name,
            "sanction-id": sanction.id,
        },
    ))


def notify_vote_updated(
    sanction: Sanction,
    new_voters: Iterable[UserRef],
    agent: Optional[UserRef] = None,
) -> bool:
    """Tell the target and everyone who voted before that new votes arrived."""
    new_names = {u.name_lower for u in new_voters}
    prior_voter_ids: List[int] = []
    for vote in sanction.votes:
        if vote.voter.name_lower in new_names or vote.voter.id is None:
            continue
        if vote.voter.id not in prior_voter_ids:
            prior_voter_ids.append(vote.voter.id)

    return emit(NotificationEvent(
        type=EVENT_VOTE_UPDATED,
        agent=agent,
        extra={
            "target-id": sanction.target.id,
            "voter-ids": prior_voter_ids,
            "sanction-id": sanction.id,
            "new-voters": sorted(new_names),
        },
    ))
