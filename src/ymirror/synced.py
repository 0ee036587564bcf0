"""Public entry point: a mirror tree kept in sync with one root of a pycrdt document.

Two flows:
1. Local mutation of the mirror -> pending operations -> one transaction per quantum
2. Remote change to the document -> deep change event -> mirror reconciled in place
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from pycrdt import Text

from ymirror.core.constants import PHASE_BOOTSTRAP
from ymirror.core.context import SynchronizationContext
from ymirror.core.converter import convert, validate
from ymirror.core.errors import MirrorError, TransactionError, ValidationError
from ymirror.core.guards import is_container, is_keyed
from ymirror.mirror.nodes import MirrorNode
from ymirror.reconcile.router import ChangeRouter
from ymirror.scheduling.quantum import Quantum

logger = logging.getLogger(__name__)


class SyncedProxy:
    """Handle returned by :func:`create_synced_proxy`.

    ``proxy`` is the root mirror node.  Use the handle as a context manager
    to dispose it on exit.
    """

    def __init__(self, context: SynchronizationContext, root: Any, proxy: MirrorNode, router: ChangeRouter) -> None:
        self._context = context
        self._root = root
        self._proxy = proxy
        self._router = router

    @property
    def proxy(self) -> MirrorNode:
        return self._proxy

    @property
    def origin(self) -> str:
        return self._context.origin

    @property
    def context(self) -> SynchronizationContext:
        return self._context

    @property
    def router(self) -> ChangeRouter:
        return self._router

    @property
    def disposed(self) -> bool:
        return self._context.disposed

    def flush(self) -> bool:
        """Apply pending local writes now instead of waiting for the quantum."""
        return self._context.scheduler.flush()

    def dispose(self) -> None:
        self._context.dispose()

    def bootstrap(self, initial: Any = None) -> bool:
        """Seed an empty root with *initial* in a single transaction.

        Every value is validated and converted before the transaction opens,
        so either all of *initial* is written or none of it is.  A root that
        already has content is left alone.

        Returns:
            ``True`` if anything was written.

        Raises:
            MirrorError: The handle was disposed.
            ValidationError: A value in *initial* cannot be stored.
            TransactionError: The write itself failed.
        """
        context = self._context
        if context.disposed:
            raise MirrorError("Cannot bootstrap a disposed mirror.")
        root = self._root
        if len(root) > 0:
            logger.warning("ymirror: bootstrap skipped, root already has %d entries", len(root))
            return False
        if not initial:
            return False

        if is_keyed(root):
            if not isinstance(initial, Mapping):
                raise ValidationError(
                    f"Bootstrap data for a keyed root must be a mapping, not {type(initial).__name__}.",
                    kind="non-plain",
                    value=initial,
                )
            for key, value in initial.items():
                if not isinstance(key, str):
                    raise ValidationError(
                        f"Key {key!r} is a {type(key).__name__}; keys must be strings.",
                        kind="non-string-key",
                        value=key,
                    )
                validate(value)
            converted: Any = {key: convert(value) for key, value in initial.items()}
        else:
            values = list(initial.values()) if isinstance(initial, Mapping) else list(initial)
            for value in values:
                validate(value)
            converted = [convert(value) for value in values]

        try:
            with context.flushing(), context.doc.transaction(origin=context.origin):
                if is_keyed(root):
                    for key, value in converted.items():
                        root[key] = value
                else:
                    root.extend(converted)
        except Exception as exc:
            raise TransactionError(PHASE_BOOTSTRAP, exc) from exc

        with context.reconciling():
            context.reconciler.reconcile_container(self._proxy, root)
        return True

    def __enter__(self) -> SyncedProxy:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()

    def __repr__(self) -> str:
        state = "disposed" if self.disposed else "live"
        return f"SyncedProxy({self.origin}, {state})"


def create_synced_proxy(
    doc: Any,
    get_root: Callable[[Any], Any],
    *,
    config: Mapping[str, object] | None = None,
    quantum: Quantum | None = None,
) -> SyncedProxy:
    """Mirror the container ``get_root(doc)`` returns.

    Existing content of the root is materialized immediately.

    Args:
        doc: The ``pycrdt.Doc`` holding the root.
        get_root: Called once with *doc*; must return a ``Map`` or ``Array``.
        config: Overrides merged over defaults and ``YMIRROR_*`` environment variables.
        quantum: Deferral strategy for automatic flushes; defaults to the one
            named by ``config["quantum"]``.
    """
    root = get_root(doc)
    if not is_container(root):
        raise MirrorError(f"get_root must return a Map or Array, not {type(root).__name__}.")
    context = SynchronizationContext(doc, config=config, quantum=quantum)
    proxy = context.bridge.materialize(root)
    router = ChangeRouter(context, proxy)
    router.attach(root)
    return SyncedProxy(context, root, proxy, router)


def synced_text(initial: str = "") -> Text:
    """Return a detached ``Text`` to use in bootstrap data or assignments."""
    return Text(initial)
