"""Origin marker generation and validation."""

from __future__ import annotations

import re

from ulid import ULID

from ymirror.core.constants import ORIGIN_PREFIX

_ORIGIN_RE = re.compile(rf"^{ORIGIN_PREFIX}_[0-9A-HJKMNP-TV-Z]{{26}}$")


def generate_origin() -> str:
    """Return a new origin marker in the format ``ymirror_<ULID>``."""
    return f"{ORIGIN_PREFIX}_{ULID()}"


def validate_origin(origin: object) -> bool:
    """Return ``True`` if *origin* looks like a marker produced by :func:`generate_origin`."""
    return isinstance(origin, str) and bool(_ORIGIN_RE.match(origin))
