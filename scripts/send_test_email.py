"""Send a test wishlist email to TEST_RECIPIENT."""

from __future__ import annotations

import asyncio
import os

from dotenv import load_dotenv

from cardvault.email.render import render_email
from cardvault.logic.wishlist import WISHLIST_SUBJECT
from cardvault.utils.esp import EmailMessage, EmailProvider
from cardvault.utils.urls import unsubscribe_url


async def main() -> None:
    load_dotenv()
    recipient = os.environ.get("TEST_RECIPIENT")
    if not recipient:
        raise SystemExit("TEST_RECIPIENT env var required")
    subject, html = render_email(
        "wishlist",
        {
            "subject": WISHLIST_SUBJECT,
            "product_title": "PSA 10 Charizard Base Set",
            "product_url": None,
            "unsubscribe_url": unsubscribe_url("test-wishlist"),
        },
    )
    provider = EmailProvider()
    await provider.send(EmailMessage(to=recipient, subject=subject, html=html))
    print("Sent test email to", recipient)


if __name__ == "__main__":
    asyncio.run(main())
