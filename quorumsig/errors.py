"""
Exceptions raised by quorumsig.

A verification that simply does not hold is not an exception: verify() returns
False and check() returns VerifyOutcome.INVALID.
"""


class QuorumSigError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(QuorumSigError, ValueError):
    """Invalid threshold / participant parameters. Never retried automatically."""


class InsufficientSharesError(QuorumSigError):
    """Fewer than threshold signers are available for a signing session."""


class SessionTimeoutError(InsufficientSharesError):
    """Not enough signers responded before the session deadline."""


class MalformedInputError(QuorumSigError, ValueError):
    """Wrong length or out of range bytes, scalars or coordinates."""


class SecurityInvariantViolation(QuorumSigError):
    """
    Nonce reuse, a threshold below majority or a broken reshare.
    Indicates a bug or an attack; callers must not swallow it.
    """


class SessionAbortedError(QuorumSigError):
    """A signer was evicted or deactivated, or the key epoch changed, mid-session."""


class InvalidPartialSignatureError(QuorumSigError):
    """A partial signature does not match the signer's public share."""

    def __init__(self, participant_id, message=None):
        self.participant_id = participant_id
        super().__init__(message or f"invalid partial signature from {participant_id}")


class BudgetExceededError(QuorumSigError):
    """The metered execution budget ran out."""
