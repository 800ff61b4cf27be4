"""Error taxonomy for stock checks and target management.

Check-side errors (``CheckError`` and subclasses) are raised inside the checker
and converted into an error outcome before leaving it. Control-side errors are
raised by the target service and mapped to HTTP status codes by the API layer.
"""


class StockWatchError(Exception):
    """Base class for all StockWatch errors."""


# ---------------------------------------------------------------------------
# Check-side
# ---------------------------------------------------------------------------


class CheckError(StockWatchError):
    """A single stock check could not produce a verdict."""


class UnreachableError(CheckError):
    def __init__(self, url: str, reason: str = "unreachable"):
        self.url = url
        super().__init__(reason)


class PoolExhaustedError(CheckError):
    """No browser session could be leased within the timeout."""


class PoolClosedError(PoolExhaustedError):
    """The session pool has been shut down."""


class RenderTimeoutError(CheckError):
    """The page did not finish rendering and detection could not recover."""


class DetectionError(CheckError):
    """Every detection strategy failed with an unexpected exception."""


# ---------------------------------------------------------------------------
# Control-side
# ---------------------------------------------------------------------------


class PersistenceError(StockWatchError):
    """The relational store rejected or failed a read/write."""


class TargetValidationError(StockWatchError):
    """A target request failed validation."""


class InvalidTargetUrlError(TargetValidationError):
    pass


class DuplicateTargetError(StockWatchError):
    pass


class TargetNotFoundError(StockWatchError):
    pass


class OwnershipError(StockWatchError):
    pass


class TargetInactiveError(StockWatchError):
    pass


class CheckInProgressError(StockWatchError):
    pass
