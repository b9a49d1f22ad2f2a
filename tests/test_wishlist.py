from datetime import timedelta

import pytest
from sqlalchemy import text

from cardvault.logic import wishlist
from cardvault.utils.dates import utcnow
from cardvault.utils.urls import load_token


class RecordingProvider:
    def __init__(self):
        self.sent = []

    async def send(self, message):
        self.sent.append(message)


class FailingProvider:
    def __init__(self, bad_recipients=None):
        self.bad_recipients = bad_recipients
        self.sent = []

    async def send(self, message):
        if self.bad_recipients is None or message.to in self.bad_recipients:
            raise RuntimeError("resend returned 500")
        self.sent.append(message)


def test_get_or_create_returns_snapshot(engine):
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO suggested_keywords (word) VALUES ('charizard'), ('pikachu')"))
    snapshot = wishlist.get_or_create(engine, " 123 ")
    assert snapshot == {"keywords": [], "email": None, "suggestedKeywords": ["charizard", "pikachu"]}
    assert wishlist.get_or_create(engine, "123")["keywords"] == []


def test_intents_update_keywords_and_email(engine):
    wishlist.get_or_create(engine, "123")
    wishlist.apply_intent(engine, "123", "add_keyword", keyword=" Charizard ")
    wishlist.apply_intent(engine, "123", "add_keyword", keyword="charizard")
    snapshot = wishlist.apply_intent(engine, "123", "add_keyword", keyword="umbreon")
    assert snapshot["keywords"] == ["charizard", "umbreon"]

    snapshot = wishlist.apply_intent(engine, "123", "remove_keyword", keyword="UMBREON")
    assert snapshot["keywords"] == ["charizard"]

    snapshot = wishlist.apply_intent(engine, "123", "set_email", email="ash@example.com")
    assert snapshot["email"] == "ash@example.com"
    snapshot = wishlist.apply_intent(engine, "123", "unsubscribe")
    assert snapshot["email"] is None


@pytest.mark.parametrize(
    "customer_id, intent, kwargs, message, status",
    [
        (None, "add_keyword", {}, "No id provided", 400),
        ("123", None, {}, "No intent provided", 400),
        ("123", "dance", {}, "Unknown intent...", 400),
        ("123", "add_keyword", {"keyword": " "}, "No keyword provided", 400),
        ("123", "set_email", {}, "No email provided", 400),
        ("999", "add_keyword", {"keyword": "mew"}, "No Wishlist found on account.", 404),
    ],
)
def test_invalid_intents(engine, customer_id, intent, kwargs, message, status):
    wishlist.get_or_create(engine, "123")
    with pytest.raises(wishlist.WishlistError) as excinfo:
        wishlist.apply_intent(engine, customer_id, intent, **kwargs)
    assert str(excinfo.value) == message
    assert excinfo.value.status_code == status


def test_match_requires_email_and_keyword_in_title(engine):
    for customer_id, email, word in [("1", "a@example.com", "charizard"), ("2", None, "charizard"), ("3", "c@example.com", "mew")]:
        wishlist.get_or_create(engine, customer_id)
        wishlist.apply_intent(engine, customer_id, "add_keyword", keyword=word)
        if email:
            wishlist.apply_intent(engine, customer_id, "set_email", email=email)
    assert wishlist.match_wishlists(engine, "PSA 10 CHARIZARD-HOLO") == [("1", "a@example.com")]


def test_repeat_window(engine):
    assert not wishlist.recently_emailed(engine, "gid://shopify/Product/1")
    wishlist.record_email_sent(engine, "gid://shopify/Product/1")
    assert wishlist.recently_emailed(engine, "gid://shopify/Product/1")
    with engine.begin() as conn:
        conn.execute(
            text("UPDATE emails_sent SET last_sent = :old"), {"old": utcnow() - timedelta(hours=25)}
        )
    assert not wishlist.recently_emailed(engine, "gid://shopify/Product/1")


@pytest.mark.asyncio
async def test_notify_sends_once_per_day(engine, monkeypatch):
    monkeypatch.setenv("SIGNING_SECRET", "secret")
    wishlist.get_or_create(engine, "1")
    wishlist.apply_intent(engine, "1", "add_keyword", keyword="charizard")
    wishlist.apply_intent(engine, "1", "set_email", email="a@example.com")
    provider = RecordingProvider()

    sent = await wishlist.notify_wishlists(
        engine, "gid://shopify/Product/1", "PSA 10 Charizard", product_url="https://shop/products/x", provider=provider
    )
    again = await wishlist.notify_wishlists(engine, "gid://shopify/Product/1", "PSA 10 Charizard", provider=provider)

    assert (sent, again) == (1, 0)
    message = provider.sent[0]
    assert message.to == "a@example.com"
    assert message.subject == wishlist.WISHLIST_SUBJECT
    assert "PSA 10 Charizard" in message.html
    token = message.html.split("token=", 1)[1].split('"', 1)[0]
    assert load_token(token, "unsubscribe") == {"wishlist_id": "1"}


@pytest.mark.asyncio
async def test_no_match_does_not_record_send(engine):
    assert await wishlist.notify_wishlists(engine, "gid://shopify/Product/2", "Booster Box", provider=RecordingProvider()) == 0
    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM emails_sent")).scalar() == 0


def subscribe(engine, customer_id, email, word="charizard"):
    wishlist.get_or_create(engine, customer_id)
    wishlist.apply_intent(engine, customer_id, "add_keyword", keyword=word)
    wishlist.apply_intent(engine, customer_id, "set_email", email=email)


@pytest.mark.asyncio
async def test_failed_send_does_not_suppress_next_attempt(engine, monkeypatch):
    monkeypatch.setenv("SIGNING_SECRET", "secret")
    subscribe(engine, "1", "a@example.com")

    failed = await wishlist.notify_wishlists(engine, "gid://shopify/Product/1", "PSA 10 Charizard", provider=FailingProvider())
    assert failed == 0
    assert not wishlist.recently_emailed(engine, "gid://shopify/Product/1")

    provider = RecordingProvider()
    assert await wishlist.notify_wishlists(engine, "gid://shopify/Product/1", "PSA 10 Charizard", provider=provider) == 1
    assert [message.to for message in provider.sent] == ["a@example.com"]


@pytest.mark.asyncio
async def test_one_bad_recipient_does_not_stop_the_batch(engine, monkeypatch):
    monkeypatch.setenv("SIGNING_SECRET", "secret")
    subscribe(engine, "1", "a@example.com")
    subscribe(engine, "2", "b@example.com")
    provider = FailingProvider(bad_recipients={"a@example.com"})

    sent = await wishlist.notify_wishlists(engine, "gid://shopify/Product/1", "PSA 10 Charizard", provider=provider)

    assert sent == 1
    assert [message.to for message in provider.sent] == ["b@example.com"]
    assert wishlist.recently_emailed(engine, "gid://shopify/Product/1")
