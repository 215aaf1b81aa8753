"""Provide utility helpers for timestamps and identifiers."""

from __future__ import annotations

import random
import string
import time
from datetime import datetime, timezone

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _today() -> str:
    """Return today's UTC date as ``YYYY-MM-DD``."""
    return datetime.now(timezone.utc).date().isoformat()


def generate_id() -> str:
    """Return an identifier of the form ``<epoch-millis>-<9 base36 chars>``."""
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"
