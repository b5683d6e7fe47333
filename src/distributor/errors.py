"""Distributor error taxonomy.

Every error aborts the call that raised it with no state change, except
TransferUnconfirmed, which leaves the claim recorded. Callers
are expected to resubmit with corrected parameters or after time passes;
the engine never retries on their behalf.
"""

from __future__ import annotations


class DistributorError(Exception):
    """Base class for every distributor rejection."""
    pass


# Authorization

class CallerNotOwner(DistributorError):
    """Raised when an owner-only operation is called by anyone else."""
    pass


class CallerNotAuthorized(DistributorError):
    """Raised when the caller is neither the owner nor a root updater."""
    pass


# State preconditions

class NoPendingRoot(DistributorError):
    """Raised when accepting or revoking with nothing pending."""
    pass


class TimelockNotExpired(DistributorError):
    """Raised when a pending root has not matured yet.

    Covers both an early accept and an attempt to shorten the timelock
    while an immature pending root exists.
    """
    pass


class RootNotSet(DistributorError):
    """Raised when claiming before any root is committed."""
    pass


# Verification

class InvalidOrExpiredProof(DistributorError):
    """Raised when a proof does not verify against the current root.

    Stale proofs (valid only against a superseded root), malformed proofs
    and mismatched leaves are indistinguishable here by design of the
    commitment: the proof simply does not fold to the live root.
    """
    pass


class AlreadyClaimed(DistributorError):
    """Raised when the presented cumulative amount leaves nothing owed."""
    pass


# Collaborators

class TransferFailed(DistributorError):
    """Raised by a transfer backend when value could not be moved."""
    pass


class TransferUnconfirmed(DistributorError):
    """Raised when a payout was broadcast but its outcome is unknown.

    The transaction may still be mined, so the claim must stay recorded.
    """

    def __init__(self, message: str, tx_hash: str) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
