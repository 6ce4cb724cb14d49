from __future__ import annotations

import logging
from typing import List

from config import (
    AGREE_TEMPLATE_TEXT,
    AGREE_TEMPLATE_TITLE,
    DISAGREE_TEMPLATE_TEXT,
    DISAGREE_TEMPLATE_TITLE,
)
from sanctions.services.wiki import WikiClient

logger = logging.getLogger(__name__)

SUMMARY = "Create template used for voting on sanctions"


def vote_template_pages() -> List[tuple]:
    return [
        (f"Template:{AGREE_TEMPLATE_TITLE}", AGREE_TEMPLATE_TEXT),
        (f"Template:{DISAGREE_TEMPLATE_TITLE}", DISAGREE_TEMPLATE_TEXT),
    ]


async def ensure_vote_templates(client: WikiClient) -> List[str]:
    """Create the Agree/Disagree templates where missing. Returns the titles created."""
    created: List[str] = []
    for title, text in vote_template_pages():
        if await client.page_exists(title):
            logger.info(f"{title} already exists, leaving it alone")
            continue
        if await client.create_page(title, text, SUMMARY):
            created.append(title)
    return created
