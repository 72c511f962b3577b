"""
Custom exception hierarchy for the position tracker.

Hierarchy:

    PositionTrackerError (base)
    ├── OperationalError   : transport-side failures (batched reads, event feed)
    │   └── FeedError
    ├── DataError          : malformed input handed to the core
    │   └── ValidationError
    └── InvariantError     : identity guarantee broken (e.g. colliding position keys)

Rules:
    - Not-yet-loaded data, stale overlay entries, unmatched events and
      non-computable metrics are NOT errors. They surface as empty results,
      ignored entries and None fields.
    - OperationalError: log, keep the last good snapshot, retry on next cycle.
    - DataError / InvariantError: caller bug or bad configuration; propagate.
"""


class PositionTrackerError(Exception):
    """Base exception for all position tracker errors."""
    pass


# ============ OPERATIONAL (transient, retryable) ============

class OperationalError(PositionTrackerError):
    """Transient error from an external collaborator (RPC read, websocket feed)."""
    pass


class FeedError(OperationalError):
    """Raised when subscribing to or reading from the live event feed fails."""
    pass


# ============ DATA (bad input) ============

class DataError(PositionTrackerError):
    """Input handed to the core does not have the expected shape."""
    pass


class ValidationError(DataError):
    """Raised when validation checks fail (unknown chain, truncated record array)."""
    pass


# ============ INVARIANT ============

class InvariantError(PositionTrackerError):
    """Identity invariant violation, e.g. two query slots mapping to one key."""
    pass
