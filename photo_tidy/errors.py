"""Exception types raised by the tidy pipeline."""


class TidyError(Exception):
    """Base error for photo_tidy."""


class StoreError(TidyError):
    """Persisted state could not be read or written."""


class HashMismatch(TidyError):
    """File content no longer matches the hash recorded for it."""

    def __init__(self, path, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"Hash mismatch for {path}: expected {expected}, got {actual}")


class PathCollision(TidyError):
    """The planner could not give a file a unique destination name."""


class Cancelled(TidyError):
    """A running stage was asked to stop."""


class DryRunViolation(RuntimeError):
    """A filesystem mutation was attempted during a dry run.

    Programming error, so not a TidyError; per-item handlers must never
    catch it.
    """
