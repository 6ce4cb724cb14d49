"""
Platform hook adapters.

Each function takes the plain values the wiki hands to a hook and returns
what the hook returns there: True to let the platform continue, False to
abort. Sanction logic lives in sanctions.services.
"""
from __future__ import annotations

import html
import logging
from datetime import datetime, UTC
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from config import (
    AGREE_TEMPLATE_TITLE,
    CONTENT_MODEL_FLOW_BOARD,
    DISAGREE_TEMPLATE_TITLE,
    DISCUSSION_PAGE_NAME,
    ENOTIF_WATCHLIST,
    FLOW_BOARD_MODULE,
    FLOW_TOPIC_MODULE,
    INSULTING_NAME_TOPIC_TITLE,
    LINK_ON_DIFF,
    LINK_ON_HISTORY,
    LINK_ON_USER_CONTRIBUTES,
    LINK_ON_USER_PAGE,
    LINK_ON_USER_TOOL,
    MAX_BLOCK_PERIOD,
    SHOW_UPDATED_MARKER,
    SPECIAL_PAGE_NAME,
    WIKI_ARTICLE_PATH,
)
from sanctions.models import NotificationEvent, PageView, Revision, TopicPost, UserRef
from sanctions.services.identity import resolve
from sanctions.services.lifecycle import is_expired
from sanctions.services.notifications import define_events, is_sanction_bot, should_insert
from sanctions.services.tally import has_vote_right
from sanctions.services.trigger import on_topic_viewed
from sanctions.services.wiki import WikiApiError

logger = logging.getLogger(__name__)

TopicReader = Callable[[str], Awaitable[List[TopicPost]]]
WatchlistUpdater = Callable[[UserRef, str, datetime], None]


def _db_key(title: str) -> str:
    return title.replace("_", " ").strip()


def page_url(title: str) -> str:
    return WIKI_ARTICLE_PATH.replace("$1", quote(_db_key(title).replace(" ", "_"), safe="/:"))


def special_sanctions_title(subpage: Optional[str] = None) -> str:
    if subpage:
        return f"{SPECIAL_PAGE_NAME}/{subpage}"
    return SPECIAL_PAGE_NAME


def make_link(title: str, text: str) -> str:
    return '<a href="{}" title="{}">{}</a>'.format(
        html.escape(page_url(title)),
        html.escape(_db_key(title)),
        html.escape(text),
    )


# ----------------------------------------------------------------------------
# Page views
# ----------------------------------------------------------------------------

async def on_flow_add_modules(
    out: PageView,
    topic_reader: TopicReader,
    now: Optional[datetime] = None,
) -> bool:
    """Add the sanction front-end to the sanctions board and sanction topics."""
    if out.title is None:
        return True

    # The board for sanctions sends readers to the sanction list unless asked not to
    if _db_key(out.title) == _db_key(DISCUSSION_PAGE_NAME):
        if out.request.get("redirect") != "no":
            out.redirect(page_url(special_sanctions_title()))
        out.add_modules(FLOW_BOARD_MODULE)
        return True

    # Each topic: the title text without namespace is the topic id
    title_text = out.title.split(":", 1)[-1]
    sanction = resolve(title_text.lower())
    if not sanction:
        return True

    out.add_modules(FLOW_TOPIC_MODULE)

    now = now or datetime.now(UTC)
    posts: List[TopicPost] = []
    if not is_expired(sanction, now):
        try:
            posts = await topic_reader(sanction.id)
        except (httpx.HTTPError, WikiApiError) as e:
            logger.error(f"Failed to read topic {sanction.id}: {e}")
            return True

    await on_topic_viewed(sanction, posts, now)
    return True


# ----------------------------------------------------------------------------
# Notifications and email
# ----------------------------------------------------------------------------

def on_abort_email_notification(
    editor: UserRef,
    title: str,
    content_model: str,
    update_watchlist: Optional[WatchlistUpdater] = None,
) -> bool:
    """
    Return False to abort the email notification for an edit.

    Flow boards notify through their own events, so their email is aborted and
    the watchlist timestamp is updated here instead. Edits by the sanction bot
    never send email.
    """
    if content_model == CONTENT_MODEL_FLOW_BOARD:
        if (ENOTIF_WATCHLIST or SHOW_UPDATED_MARKER) and update_watchlist is not None:
            update_watchlist(editor, title, datetime.now(UTC))
        return False

    if is_sanction_bot(editor):
        return False

    return True


def on_email_confirmed(user: UserRef, confirmed: bool) -> Tuple[bool, bool]:
    """The sanction bot may edit without a confirmed address. Returns (continue, confirmed)."""
    if not is_sanction_bot(user):
        return True, confirmed
    return False, True


def on_before_echo_event_insert(event: NotificationEvent) -> bool:
    return should_insert(event)


def on_before_create_echo_event(notifs: Dict, categories: Dict, icons: Dict) -> None:
    define_events(notifs, categories, icons)


def on_resource_loader_get_config_vars(config_vars: Dict) -> bool:
    config_vars["wgSanctionsAgreeTemplate"] = AGREE_TEMPLATE_TITLE
    config_vars["wgSanctionsDisagreeTemplate"] = DISAGREE_TEMPLATE_TITLE
    config_vars["wgSanctionsInsultingNameTopicTitle"] = INSULTING_NAME_TOPIC_TITLE
    config_vars["wgSanctionsMaxBlockPeriod"] = int(MAX_BLOCK_PERIOD)
    return True


# ----------------------------------------------------------------------------
# Tool links
# ----------------------------------------------------------------------------

def on_user_tool_links_edit(
    user_id: int,
    user_text: str,
    items: List[str],
    current_user: Optional[UserRef],
) -> bool:
    """(talk | contribs | sanctions)"""
    if current_user is None or not has_vote_right(current_user):
        return True

    items.append(make_link(special_sanctions_title(user_text), LINK_ON_USER_TOOL))
    return True


def on_diff_tools(
    new_rev: Revision,
    links: List[str],
    old_rev: Optional[Revision],
    current_user: UserRef,
) -> bool:
    if not has_vote_right(current_user):
        return True

    ids = ""
    if old_rev is not None:
        ids += f"{old_rev.id}/"
    ids += str(new_rev.id)

    links.append(make_link(special_sanctions_title(f"{new_rev.user.name}/{ids}"), LINK_ON_DIFF))
    return True


def on_history_tools(
    rev: Revision,
    links: List[str],
    prev_rev: Optional[Revision],
    current_user: UserRef,
) -> bool:
    if not has_vote_right(current_user):
        return True

    links.append(make_link(special_sanctions_title(f"{rev.user.name}/{rev.id}"), LINK_ON_HISTORY))
    return True


def on_sidebar_before_output(relevant_user: Optional[UserRef], sidebar: Dict[str, Dict]) -> None:
    if not relevant_user:
        return

    sanctions_link = {
        "sanctions": {
            "text": LINK_ON_USER_PAGE,
            "href": page_url(special_sanctions_title(relevant_user.name)),
            "id": "t-sanctions",
        }
    }

    toolbox = sidebar.get("TOOLBOX")
    if not toolbox:
        sidebar["TOOLBOX"] = sanctions_link
        return

    after = "blockip" if "blockip" in toolbox else "log"
    merged: Dict[str, Dict] = {}
    for key, item in toolbox.items():
        merged[key] = item
        if key == after:
            merged.update(sanctions_link)
    if "sanctions" not in merged:
        merged.update(sanctions_link)
    sidebar["TOOLBOX"] = merged


def on_contributions_tool_links(user_id: int, user_name: str, tools: Dict[str, str]) -> None:
    tools["sanctions"] = make_link(special_sanctions_title(user_name), LINK_ON_USER_CONTRIBUTES)
