"""Permission checks for guarded distributor operations.

Roles are re-read from the distributor on every call; nothing is cached.
Each guarded operation calls one of these before doing anything else.
"""

from __future__ import annotations

from typing import AbstractSet

from distributor.errors import CallerNotAuthorized, CallerNotOwner


def require_owner(owner: str, caller: str) -> None:
    """Fail unless caller is the current owner."""
    if caller != owner:
        raise CallerNotOwner(f"Caller {caller} is not the owner")


def require_owner_or_updater(owner: str, updaters: AbstractSet[str], caller: str) -> None:
    """Fail unless caller is the owner or a registered root updater."""
    if caller != owner and caller not in updaters:
        raise CallerNotAuthorized(
            f"Caller {caller} is neither the owner nor a root updater"
        )
