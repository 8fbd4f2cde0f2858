"""Error hierarchy shared by the reconciler, the admission mutator and stores.

Every error carries a ``retryable`` flag.  The reconcile queue consults it to
decide between redelivering a key with backoff and dropping it; the webhook
maps errors onto HTTP status codes instead.
"""

from __future__ import annotations


class IPAMError(Exception):
    """Base class for all errors raised by this package."""

    retryable = True


class InvalidNetworkConfigError(IPAMError):
    """A network-attachment definition carries an unparsable configuration."""

    retryable = False


class InvalidSubnetError(IPAMError):
    """A subnet entry in the network configuration is not a valid CIDR."""

    retryable = False


class InvalidIPRequestError(IPAMError):
    """A static IP request cannot be honoured against the network subnets."""

    retryable = False


class NetworkSelectionParseError(IPAMError):
    """The pod network selection annotation is malformed."""

    retryable = False


class ClaimOwnershipConflictError(IPAMError):
    """An IPAMClaim with the requested name belongs to somebody else.

    This is the leaked-claim condition.  It is never retried: adopting the
    claim would silently hand a reserved address over to another VM.
    """

    retryable = False

    def __init__(self, claim_name: str) -> None:
        super().__init__(
            f'failed since it found an existing IPAMClaim for "{claim_name}"'
        )
        self.claim_name = claim_name


class RetryableError(IPAMError):
    """Transient condition; the operation should be attempted again later."""


class StoreError(IPAMError):
    """Failure talking to the cluster object store."""


class NotFoundError(StoreError):
    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f'{kind} "{namespace}/{name}" not found')
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(StoreError):
    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f'{kind} "{namespace}/{name}" already exists')
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(StoreError):
    """Optimistic-concurrency update lost against a newer resource version."""


class StoreTimeoutError(StoreError):
    """A store call did not complete within its deadline."""
