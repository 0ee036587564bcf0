"""Shared constants for the mirror engine."""

from __future__ import annotations

# Prefix of every origin marker a context attaches to its transactions.
ORIGIN_PREFIX = "ymirror"

# Mirror dict keys starting with this prefix are bookkeeping and never synced.
INTERNAL_KEY_PREFIX = "__ymirror"

# Pseudo key under which a leaf value's version bump is announced to subscribers.
LEAF_VERSION_KEY = "__ymirror_leaf_version"

# Integers outside the signed 64-bit range cannot be stored losslessly.
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# Transaction phases reported by TransactionError.
PHASE_MAP_DELETES = "map-deletes"
PHASE_MAP_SETS = "map-sets"
PHASE_ARRAY_OPERATIONS = "array-operations"
PHASE_BOOTSTRAP = "bootstrap"

# Quantum strategy names accepted in config.
QUANTUM_ASYNCIO = "asyncio"
QUANTUM_MANUAL = "manual"
QUANTUM_STRATEGIES = frozenset({QUANTUM_ASYNCIO, QUANTUM_MANUAL})


def is_internal_key(key: object) -> bool:
    """Return ``True`` if *key* names mirror bookkeeping state."""
    return isinstance(key, str) and key.startswith(INTERNAL_KEY_PREFIX)
