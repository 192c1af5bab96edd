"""
KDAO Exceptions

Error taxonomy shared by the staking, governance, treasury and election
engines. Every failure aborts the whole operation; the host transaction
restores all journaled state before the exception reaches the caller.
"""


class KDAOError(Exception):
    """Base exception for KDAO."""
    pass


class UnauthorizedError(KDAOError):
    """Caller lacks the role or identity required by the operation."""
    pass


class InvalidStateError(KDAOError):
    """Operation attempted outside its legal phase or status."""
    pass


class InvariantViolationError(KDAOError):
    """Operation would break an accounting invariant."""
    pass


class InsufficientFundsError(KDAOError):
    """Treasury, pool or balance below the required amount."""
    pass


class InvalidInputError(KDAOError):
    """Zero or out-of-range amount, unknown identity or index."""
    pass


class TransferFailedError(KDAOError):
    """The value ledger reported a failed transfer."""
    pass


class AlreadyDoneError(KDAOError):
    """Duplicate vote, nomination, completion or release."""
    pass


class BelowMinimumError(InvalidInputError):
    """Stake amount below the configured minimum."""
    pass


class CapacityExceededError(InvariantViolationError):
    """Pool or concurrency capacity would be exceeded."""
    pass


class InsufficientWeightError(UnauthorizedError):
    """Caller's voting weight is below the required threshold."""
    pass


class AlreadyVotedError(AlreadyDoneError):
    """Identity already voted on this proposal or election."""
    pass


class ReentrancyError(InvalidStateError):
    """An operation was re-entered while still in progress."""
    pass


class ExecutionRevertedError(KDAOError):
    """A proposal's dispatched call failed."""
    pass


class ConfigurationError(KDAOError):
    """Configuration error."""
    pass
