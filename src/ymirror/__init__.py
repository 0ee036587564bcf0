"""Keep a mutable Python object tree in sync with a pycrdt document."""

from __future__ import annotations

from ymirror.core.config import MirrorConfig, default_config
from ymirror.core.converter import to_plain, validate
from ymirror.core.errors import MirrorError, ReparentError, TransactionError, ValidationError
from ymirror.mirror.leaf import LeafRef
from ymirror.mirror.nodes import MirrorDict, MirrorList, MirrorNode
from ymirror.mirror.ops import UNDEFINED, RawOp
from ymirror.scheduling.quantum import AsyncioQuantum, ManualQuantum
from ymirror.synced import SyncedProxy, create_synced_proxy, synced_text

__all__ = [
    "UNDEFINED",
    "AsyncioQuantum",
    "LeafRef",
    "ManualQuantum",
    "MirrorConfig",
    "MirrorDict",
    "MirrorError",
    "MirrorList",
    "MirrorNode",
    "RawOp",
    "ReparentError",
    "SyncedProxy",
    "TransactionError",
    "ValidationError",
    "create_synced_proxy",
    "default_config",
    "synced_text",
    "to_plain",
    "validate",
]
