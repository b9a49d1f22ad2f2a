"""Storefront wishlists and back-in-stock matching."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql import text

from cardvault.email.render import render_email
from cardvault.utils.dates import utcnow
from cardvault.utils.esp import EmailMessage, EmailProvider
from cardvault.utils.urls import unsubscribe_url

logger = logging.getLogger(__name__)

INTENTS = {"add_keyword", "remove_keyword", "set_email", "unsubscribe"}
REPEAT_WINDOW = timedelta(hours=24)
EMAIL_CHUNK = 50
WISHLIST_SUBJECT = "Item from your wishlist now in stock !"


class WishlistError(ValueError):
    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def _keywords(conn: Connection, wishlist_id: str) -> list[str]:
    rows = conn.execute(
        text(
            """
            SELECT k.word FROM keywords k
            JOIN wishlist_keywords wk ON wk.keyword_id = k.id
            WHERE wk.wishlist_id = :id
            ORDER BY k.word
            """
        ),
        {"id": wishlist_id},
    )
    return [row[0] for row in rows]


def _suggested(conn: Connection) -> list[str]:
    return [row[0] for row in conn.execute(text("SELECT word FROM suggested_keywords ORDER BY created_at, id"))]


def _snapshot(conn: Connection, wishlist_id: str) -> dict[str, Any]:
    email = conn.execute(text("SELECT email FROM wishlists WHERE id = :id"), {"id": wishlist_id}).scalar_one_or_none()
    return {"keywords": _keywords(conn, wishlist_id), "email": email, "suggestedKeywords": _suggested(conn)}


def get_or_create(engine: Engine, customer_id: str) -> dict[str, Any]:
    customer_id = customer_id.strip()
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO wishlists (id, created_at) VALUES (:id, :now)
                ON CONFLICT (id) DO NOTHING
                """
            ),
            {"id": customer_id, "now": utcnow()},
        )
        return _snapshot(conn, customer_id)


def apply_intent(
    engine: Engine,
    customer_id: str | None,
    intent: str | None,
    *,
    keyword: str | None = None,
    email: str | None = None,
) -> dict[str, Any]:
    if not customer_id:
        raise WishlistError("No id provided")
    if not intent:
        raise WishlistError("No intent provided")
    if intent not in INTENTS:
        raise WishlistError("Unknown intent...")
    customer_id = str(customer_id).strip()
    with engine.begin() as conn:
        exists = conn.execute(text("SELECT 1 FROM wishlists WHERE id = :id"), {"id": customer_id}).first()
        if exists is None:
            raise WishlistError("No Wishlist found on account.", status_code=404)
        if intent in {"add_keyword", "remove_keyword"}:
            if not keyword or not keyword.strip():
                raise WishlistError("No keyword provided")
            word = keyword.lower().strip()
            if intent == "add_keyword":
                _add_keyword(conn, customer_id, word)
            else:
                conn.execute(
                    text(
                        """
                        DELETE FROM wishlist_keywords
                        WHERE wishlist_id = :id AND keyword_id IN (SELECT id FROM keywords WHERE word = :word)
                        """
                    ),
                    {"id": customer_id, "word": word},
                )
        elif intent == "set_email":
            if not email or not email.strip():
                raise WishlistError("No email provided")
            conn.execute(text("UPDATE wishlists SET email = :email WHERE id = :id"), {"email": email.strip(), "id": customer_id})
        else:
            conn.execute(text("UPDATE wishlists SET email = NULL WHERE id = :id"), {"id": customer_id})
        return _snapshot(conn, customer_id)


def _add_keyword(conn: Connection, wishlist_id: str, word: str) -> None:
    conn.execute(text("INSERT INTO keywords (word) VALUES (:word) ON CONFLICT (word) DO NOTHING"), {"word": word})
    keyword_id = conn.execute(text("SELECT id FROM keywords WHERE word = :word"), {"word": word}).scalar_one()
    conn.execute(
        text(
            """
            INSERT INTO wishlist_keywords (wishlist_id, keyword_id) VALUES (:id, :keyword_id)
            ON CONFLICT (wishlist_id, keyword_id) DO NOTHING
            """
        ),
        {"id": wishlist_id, "keyword_id": keyword_id},
    )


def unsubscribe(engine: Engine, wishlist_id: str) -> None:
    with engine.begin() as conn:
        conn.execute(text("UPDATE wishlists SET email = NULL WHERE id = :id"), {"id": wishlist_id})


def match_wishlists(engine: Engine, product_name: str) -> list[tuple[str, str]]:
    """(wishlist id, email) pairs whose keywords appear in the product name."""
    name = product_name.lower()
    with engine.connect() as conn:
        rows = conn.execute(
            text(
                """
                SELECT w.id, w.email, k.word
                FROM wishlists w
                JOIN wishlist_keywords wk ON wk.wishlist_id = w.id
                JOIN keywords k ON k.id = wk.keyword_id
                WHERE w.email IS NOT NULL
                """
            )
        ).all()
    matches: dict[str, str] = {}
    for wishlist_id, email, word in rows:
        if word and word in name:
            matches.setdefault(wishlist_id, email)
    return sorted(matches.items())


def recently_emailed(engine: Engine, product_id: str) -> bool:
    """True when a back-in-stock email went out for the product in the last day."""
    with engine.connect() as conn:
        last_sent = conn.execute(
            text("SELECT last_sent FROM emails_sent WHERE product_id = :id").columns(last_sent=DateTime),
            {"id": product_id},
        ).scalar_one_or_none()
    return last_sent is not None and utcnow() - last_sent < REPEAT_WINDOW


def record_email_sent(engine: Engine, product_id: str) -> None:
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                INSERT INTO emails_sent (product_id, last_sent) VALUES (:id, :now)
                ON CONFLICT (product_id) DO UPDATE SET last_sent = excluded.last_sent
                """
            ),
            {"id": product_id, "now": utcnow()},
        )


async def notify_wishlists(
    engine: Engine,
    product_id: str,
    product_title: str,
    *,
    product_url: str | None = None,
    provider: EmailProvider | None = None,
) -> int:
    """Email subscribers whose keywords match a product that came back in stock. Returns recipients emailed."""
    matches = match_wishlists(engine, product_title)
    if not matches:
        return 0
    if recently_emailed(engine, product_id):
        logger.info("Wishlist email for %s already sent in the last day", product_id)
        return 0
    provider = provider or EmailProvider()
    messages = []
    for wishlist_id, email in matches:
        subject, html = render_email(
            "wishlist",
            {
                "subject": WISHLIST_SUBJECT,
                "product_title": product_title,
                "product_url": product_url,
                "unsubscribe_url": unsubscribe_url(wishlist_id),
            },
        )
        messages.append(EmailMessage(to=email, subject=subject, html=html))
    sent = 0
    for start in range(0, len(messages), EMAIL_CHUNK):
        chunk = messages[start : start + EMAIL_CHUNK]
        results = await asyncio.gather(*(provider.send(message) for message in chunk), return_exceptions=True)
        for message, result in zip(chunk, results):
            if isinstance(result, Exception):
                logger.warning("Wishlist email to %s for %s failed: %s", message.to, product_id, result)
            else:
                sent += 1
    if sent:
        record_email_sent(engine, product_id)
    logger.info("Wishlist email for %s sent to %s of %s subscribers", product_id, sent, len(messages))
    return sent
