"""Root conftest: seeds the environment from .env.test before chat_client.config is imported."""
from __future__ import annotations

import logging
import os
from pathlib import Path

ENV_FILE = Path(__file__).resolve().parent / ".env.test"


def _load_env(path: Path) -> None:
    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        os.environ.setdefault(key.strip(), value.strip().strip('"'))


if ENV_FILE.exists():
    _load_env(ENV_FILE)

logging.getLogger("chat_client").setLevel(logging.DEBUG)
