"""
Maintenance tasks for the Sanctions workflow.

    python maintenance.py update-schema     create or migrate the sanction tables
    python maintenance.py create-templates  create the vote templates on the wiki
    python maintenance.py expire            expire sanctions past their deadline
"""
import argparse
import asyncio
import sys

from config import BOT_PASSWORD, BOT_USERNAME
from sanction_db import init_db, migrate_db
from sanctions.logging import configure_logging
from sanctions.services.lifecycle import expire_overdue
from sanctions.services.templates import ensure_vote_templates
from sanctions.services.wiki import WikiClient

logger = configure_logging()


def update_schema() -> int:
    # Existing tables first, so the indexes init_db() creates find their columns
    migrate_db()
    init_db()
    return 0


async def create_templates() -> int:
    if not BOT_USERNAME or not BOT_PASSWORD:
        logger.error("BOT_USERNAME and BOT_PASSWORD must be set to create templates!")
        return 1

    async with WikiClient() as client:
        await client.login(BOT_USERNAME, BOT_PASSWORD)
        created = await ensure_vote_templates(client)

    logger.info(f"Created {len(created)} template(s)")
    return 0


def expire() -> int:
    count = expire_overdue()
    logger.info(f"{count} sanction(s) expired")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Sanctions maintenance")
    parser.add_argument("task", choices=["update-schema", "create-templates", "expire"])
    args = parser.parse_args(argv)

    if args.task == "update-schema":
        return update_schema()
    if args.task == "create-templates":
        update_schema()
        return asyncio.run(create_templates())
    return expire()


if __name__ == "__main__":
    sys.exit(main())
