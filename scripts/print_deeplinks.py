#!/usr/bin/env python3
"""
Print deep links for all published content items (title + t.me link).
Run from the project root: python -m scripts.print_deeplinks
"""
from creditgate.bot.common import ITEM_START_PREFIX
from creditgate.bot.identity import bot_identity
from creditgate.db.session import SessionLocal
from creditgate.services.content.service import ContentService


def main():
    if not bot_identity.username:
        print("TELEGRAM_BOT_USERNAME is not set in .env; deep links unavailable.")
        return
    db = SessionLocal()
    try:
        items = ContentService(db).list_recent(limit=1000, include_drafts=False)
        if not items:
            print("No published content.")
            return
        print(f"Deep links (bot: @{bot_identity.username}):\n")
        for item in items:
            print(f"  {item.title}\n    {bot_identity.deep_link(ITEM_START_PREFIX + item.short_id)}\n")
    finally:
        db.close()


if __name__ == "__main__":
    main()
