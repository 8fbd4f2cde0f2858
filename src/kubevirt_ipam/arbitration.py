"""Create-or-adopt-or-reject decision for IPAMClaims.

Reconcile cycles for the same VM may run concurrently, out of order, or be
repeated after a partial failure.  Creating a claim is therefore always
attempted first; when the name is already taken the existing claim is only
accepted if it is owned by the very same VM (or VMI) UID.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from .exceptions import (
    AlreadyExistsError,
    ClaimOwnershipConflictError,
    NotFoundError,
    RetryableError,
    StoreError,
)
from .objects import IPAMClaim
from .store import ClusterStore

LOG = logging.getLogger(__name__)


class ArbitrationOutcome(Enum):
    CREATED = "created"
    ADOPTED = "adopted"
    RACED = "raced"


class ClaimArbiter:
    """Apply the ownership rules whenever a claim is about to be created."""

    def __init__(self, store: ClusterStore, timeout: Optional[float] = None) -> None:
        self._store = store
        self._timeout = timeout

    def ensure(self, candidate: IPAMClaim) -> ArbitrationOutcome:
        """Make sure ``candidate`` exists and belongs to its owner.

        Raises
        ------
        ClaimOwnershipConflictError
            The name is held by a claim with zero, several or a different
            owner.  Never retried by callers.
        RetryableError
            The existing claim could not be read back.
        StoreError
            Creation failed for a reason other than the name being taken.
        """

        if len(candidate.metadata.owner_references) != 1:
            raise ValueError("candidate claims must carry exactly one owner reference")
        owner_uid = candidate.metadata.owner_references[0].uid

        try:
            self._store.create(candidate, timeout=self._timeout)
        except AlreadyExistsError:
            pass
        else:
            LOG.info(
                "created IPAMClaim %s for network %s", candidate.key, candidate.network
            )
            return ArbitrationOutcome.CREATED

        try:
            existing = self._store.get(IPAMClaim, candidate.key, timeout=self._timeout)
        except NotFoundError:
            # Deleted between our create and get; the next event re-creates it.
            LOG.debug("IPAMClaim %s vanished after create conflict", candidate.key)
            return ArbitrationOutcome.RACED
        except StoreError as exc:
            raise RetryableError(
                f"could not read existing IPAMClaim {candidate.key}: {exc}"
            ) from exc

        owners = existing.metadata.owner_references
        if len(owners) == 1 and owners[0].uid == owner_uid:
            LOG.info(
                "found existing IPAMClaim %s belonging to this VM/VMI (uid=%s), nothing to do",
                candidate.key,
                owner_uid,
            )
            return ArbitrationOutcome.ADOPTED

        error = ClaimOwnershipConflictError(candidate.name)
        LOG.error(
            "leaked IPAMClaim found: %s (existing owners=%s, requested owner uid=%s)",
            error,
            [ref.uid for ref in owners],
            owner_uid,
        )
        raise error
