"""
Owner-scoped access to chat sessions and notebooks.

Every state-changing operation on an owned resource goes through
``perform_owned_mutation``:

1. no identity -> ``Unauthenticated``
2. resource missing -> ``NotFound``
3. resource owned by someone else -> the same ``NotFound``
4. otherwise the mutation is applied by the store in a single transaction
   and the updated resource is returned

A mutation is a function from the current resource to the column values it
should have afterwards. Because it describes an end state rather than a
delta, applying it twice gives the same result, and a mutation that changes
nothing succeeds without writing.
"""

import logging
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

from .domain import Identity, NotFound, Unauthenticated

logger = logging.getLogger(__name__)

R = TypeVar("R")
Mutation = Callable[[Any], Dict[str, Any]]


class OwnedStore(Protocol[R]):
    def get_owned(self, resource_id: str, owner_id: str) -> R: ...

    def mutate_owned(self, resource_id: str, owner_id: str, mutation: Mutation) -> R: ...


def require_identity(identity: Optional[Identity], message: Optional[str] = None) -> Identity:
    if identity is None:
        raise Unauthenticated(message)
    return identity


def load_owned(store: OwnedStore[R], identity: Optional[Identity], resource_id: str) -> R:
    """Read a resource the caller owns, with the same failure semantics as a mutation."""
    identity = require_identity(identity)
    return store.get_owned(resource_id, identity.user_id)


def perform_owned_mutation(store: OwnedStore[R], identity: Optional[Identity], resource_id: str,
                           mutation: Mutation) -> R:
    identity = require_identity(identity)
    try:
        return store.mutate_owned(resource_id, identity.user_id, mutation)
    except NotFound:
        logger.info("Owned mutation on %s refused for user %s", resource_id, identity.user_id)
        raise


# -------------------------------
# Mutations
# -------------------------------

def archive(_session) -> Dict[str, Any]:
    return {"is_archived": True}


def restore(_session) -> Dict[str, Any]:
    return {"is_archived": False}


def pin(_session) -> Dict[str, Any]:
    return {"is_pinned": True}


def unpin(_session) -> Dict[str, Any]:
    return {"is_pinned": False}


def toggle_public(notebook) -> Dict[str, Any]:
    return {"is_public": not notebook.is_public}


def set_fields(**changes: Any) -> Mutation:
    """Mutation that sets the given columns, skipping any passed as None."""
    wanted = {key: value for key, value in changes.items() if value is not None}
    return lambda _resource: wanted
