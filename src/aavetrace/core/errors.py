class TracerError(Exception):
    pass


class ConfigError(TracerError):
    pass


class DataSourceError(TracerError):
    pass


class NetworkError(DataSourceError):
    pass


class RateLimitError(NetworkError):
    pass


class RangeTooLargeError(DataSourceError):
    """Provider refused a block range or capped the number of returned logs."""

    def __init__(self, message: str, start_block: int = 0, end_block: int = 0) -> None:
        super().__init__(message)
        self.start_block = start_block
        self.end_block = end_block


class NotDeployedError(TracerError):
    pass


class ScanCancelledError(TracerError):
    pass


class InconsistentLedgerWarning(UserWarning):
    """
    A transfer would have driven a balance below zero.

    Happens when the scanned history is missing an earlier prefix of events.
    The balance is clamped to zero and this warning is collected instead.
    """

    def __init__(self, address: str, block_number: int, shortfall: int) -> None:
        super().__init__(
            f"balance underflow for {address} at block {block_number} (short by {shortfall})"
        )
        self.address = address
        self.block_number = block_number
        self.shortfall = shortfall
