"""Errors reported by the block range scanner."""

from __future__ import annotations

from typing import Any


class ScannerError(Exception):
    """Base class of every error the scanner reports.

    Two errors are equal when they are of the same kind and carry the same message.
    """

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ScannerError):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class RpcError(ScannerError):
    """The node answered a call with an error."""

    def __init__(self, detail: Any) -> None:
        self.detail = detail
        super().__init__(f"RPC error: {detail}")


class ServiceShutdown(ScannerError):
    """The scanner service is no longer accepting commands."""

    def __init__(self) -> None:
        super().__init__("Service is shutting down")


class BlockNotFound(ScannerError):
    """The requested block does not exist on the chain."""

    def __init__(self, block_id: Any) -> None:
        self.block_id = block_id
        super().__init__(f"Block not found, Block Id: {block_id}")


class ScannerTimeout(ScannerError):
    """A call to the node took too long."""

    def __init__(self) -> None:
        super().__init__("Operation timed out")


class BlockExceedsLatest(ScannerError):
    """A requested block lies beyond the chain head."""

    def __init__(self, label: str, number: int, latest: int) -> None:
        self.label = label
        self.number = number
        self.latest = latest
        super().__init__(f"{label} {number} exceeds the latest block {latest}")


class InvalidEventCount(ScannerError):
    """An event count of zero was requested."""

    def __init__(self) -> None:
        super().__init__("Event count must be greater than 0")


class InvalidMaxBlockRange(ScannerError):
    """A maximum block range of zero was requested."""

    def __init__(self) -> None:
        super().__init__("Max block range must be greater than 0")


class InvalidMaxConcurrentFetches(ScannerError):
    """A maximum of zero concurrent fetches was requested."""

    def __init__(self) -> None:
        super().__init__("Max concurrent fetches must be greater than 0")


class SubscriptionClosed(ScannerError):
    """The block subscription ended."""

    def __init__(self) -> None:
        super().__init__("Subscription closed")


class SubscriptionLagged(ScannerError):
    """The block subscription fell behind and skipped headers."""

    def __init__(self, skipped: int) -> None:
        self.skipped = skipped
        super().__init__(f"Subscription lagged, {skipped} messages skipped")