"""Default config generation and validation."""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from typing import TypedDict

from ymirror.core.constants import QUANTUM_ASYNCIO, QUANTUM_STRATEGIES

_TRUTHY = frozenset({"1", "true", "yes", "on"})


class MirrorConfig(TypedDict, total=False):
    debug: bool
    trace: bool
    quantum: str


def default_config() -> MirrorConfig:
    """Return the default mirror configuration.

    ``debug`` enables debug-level logging of flushes and reconciliations,
    ``trace`` additionally dumps the planned intents of every flush, and
    ``quantum`` names the deferral strategy used when no explicit one is
    passed to :func:`ymirror.create_synced_proxy`.
    """
    return {
        "debug": False,
        "trace": False,
        "quantum": QUANTUM_ASYNCIO,
    }


def load_config(raw: str) -> dict:
    """Parse a JSON config string and return the config dict.

    Raises ``json.JSONDecodeError`` on malformed input.
    """
    return json.loads(raw)


def serialize_config(config: MirrorConfig | dict[str, object]) -> str:
    """Serialize a config dict to the canonical JSON format."""
    return json.dumps(config, sort_keys=True, indent=2) + "\n"


def validate_quantum(name: object) -> bool:
    """Return ``True`` if *name* is a known quantum strategy."""
    return name in QUANTUM_STRATEGIES


def validate_config(config: Mapping[str, object]) -> tuple[bool, list[str]]:
    """Check a config mapping.

    Returns:
        ``(ok, problems)`` where *problems* lists human-readable reasons.
    """
    problems: list[str] = []
    known = set(MirrorConfig.__annotations__)
    for key in config:
        if key not in known:
            problems.append(f"Unknown config key: '{key}'")
    for flag in ("debug", "trace"):
        if flag in config and not isinstance(config[flag], bool):
            problems.append(f"'{flag}' must be a bool")
    if "quantum" in config and not validate_quantum(config["quantum"]):
        allowed = ", ".join(sorted(QUANTUM_STRATEGIES))
        problems.append(f"'quantum' must be one of: {allowed}")
    return (len(problems) == 0, problems)


def config_from_env(environ: Mapping[str, str] | None = None) -> MirrorConfig:
    """Read overrides from ``YMIRROR_DEBUG``, ``YMIRROR_TRACE`` and ``YMIRROR_QUANTUM``."""
    env = os.environ if environ is None else environ
    overrides: MirrorConfig = {}
    debug = env.get("YMIRROR_DEBUG", "")
    if debug:
        overrides["debug"] = debug.lower() in _TRUTHY
    trace = env.get("YMIRROR_TRACE", "")
    if trace:
        overrides["trace"] = trace.lower() in _TRUTHY
    quantum = env.get("YMIRROR_QUANTUM", "")
    if quantum:
        overrides["quantum"] = quantum.lower()
    return overrides


def resolve_config(
    config: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> MirrorConfig:
    """Merge defaults, environment overrides and an explicit config, in that order.

    Raises ``ValueError`` if the merged result is invalid.
    """
    merged: dict = dict(default_config())
    merged.update(config_from_env(environ))
    if config:
        merged.update(config)
    ok, problems = validate_config(merged)
    if not ok:
        raise ValueError(f"Invalid ymirror config: {'; '.join(problems)}")
    return merged  # type: ignore[return-value]
