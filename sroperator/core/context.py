"""
Reconcile context management for log correlation.

Every reconcile gets its own reconcile id which is bound, together with the
controller name and the object key, to the structlog context so that all log
lines emitted while handling one object can be correlated.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

import structlog


# Context variable for the reconcile id - accessible throughout one reconcile
reconcile_id_ctx: ContextVar[str] = ContextVar("reconcile_id", default="")


@contextmanager
def reconcile_context(controller: str, namespace: str, name: str) -> Iterator[str]:
    """
    Bind controller/object context for the duration of one reconcile.

    Yields:
        The generated reconcile id.
    """
    reconcile_id = str(uuid.uuid4())
    token = reconcile_id_ctx.set(reconcile_id)

    with structlog.contextvars.bound_contextvars(
        reconcile_id=reconcile_id,
        controller=controller,
        namespace=namespace,
        name=name,
    ):
        try:
            yield reconcile_id
        finally:
            reconcile_id_ctx.reset(token)


def get_reconcile_id() -> str:
    """
    Get current reconcile id from context.

    Returns:
        The reconcile id of the running reconcile, or empty string if not set.
    """
    return reconcile_id_ctx.get()


def bind_context(**kwargs) -> None:
    """
    Bind additional context variables for logging.

    Args:
        **kwargs: Key-value pairs to add to log context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """
    Remove context variables from logging context.

    Args:
        *keys: Keys to remove from context.
    """
    structlog.contextvars.unbind_contextvars(*keys)
