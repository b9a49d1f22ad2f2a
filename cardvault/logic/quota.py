"""PSA API key rotation backed by the quota_keys table."""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from cardvault.ingest import KeyConfig, load_key_configs
from cardvault.ingest.models import QuotaKey

logger = logging.getLogger(__name__)


class QuotaRotator:
    def __init__(self, engine: Engine, keys: dict[str, KeyConfig] | None = None) -> None:
        self.engine = engine
        self.keys = keys if keys is not None else load_key_configs()

    def acquire_key(self) -> QuotaKey | None:
        """Return the key with the most calls left whose secret is configured."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT name, calls_remaining FROM quota_keys ORDER BY calls_remaining DESC, name")
            ).all()
        for name, remaining in rows:
            config = self.keys.get(name)
            if config is None or remaining <= 0:
                continue
            secret = config.secret
            if not secret:
                logger.warning("PSA key %s has no secret in %s", name, config.env)
                continue
            return QuotaKey(name=name, calls_remaining=remaining, secret=secret)
        logger.warning("No PSA API key with remaining quota")
        return None

    def consume(self, name: str) -> bool:
        """Decrement a key's remaining calls if positive. Returns False when already at zero."""
        with self.engine.begin() as conn:
            result = conn.execute(
                text(
                    """
                    UPDATE quota_keys
                    SET calls_remaining = calls_remaining - 1
                    WHERE name = :name AND calls_remaining > 0
                    """
                ),
                {"name": name},
            )
        consumed = result.rowcount == 1
        if not consumed:
            logger.warning("PSA key %s had no calls left to consume", name)
        return consumed

    def usage(self) -> list[QuotaKey]:
        with self.engine.connect() as conn:
            rows = conn.execute(text("SELECT name, calls_remaining FROM quota_keys ORDER BY name")).all()
        return [QuotaKey(name=name, calls_remaining=remaining) for name, remaining in rows]

    def ensure_rows(self) -> None:
        """Create a quota row for every configured key that lacks one."""
        with self.engine.begin() as conn:
            for config in self.keys.values():
                conn.execute(
                    text(
                        """
                        INSERT INTO quota_keys (name, calls_remaining, daily_limit)
                        VALUES (:name, :limit, :limit)
                        ON CONFLICT (name) DO NOTHING
                        """
                    ),
                    {"name": config.name, "limit": config.daily_limit},
                )

    def reset_daily(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(text("UPDATE quota_keys SET calls_remaining = daily_limit"))
