"""Ingestion helpers."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass

import yaml

PSA_KEYS_PATH = pathlib.Path(__file__).with_name("psa_keys.yml")


@dataclass(slots=True)
class KeyConfig:
    name: str
    env: str
    daily_limit: int = 100

    @property
    def secret(self) -> str | None:
        return os.environ.get(self.env) or None


def load_key_configs(path: pathlib.Path | None = None) -> dict[str, KeyConfig]:
    data = yaml.safe_load((path or PSA_KEYS_PATH).read_text()) or []
    return {item["name"]: KeyConfig(**item) for item in data}
