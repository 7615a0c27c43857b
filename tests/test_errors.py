import pytest

from blockrange.errors import (
    BlockExceedsLatest,
    BlockNotFound,
    InvalidEventCount,
    InvalidMaxBlockRange,
    InvalidMaxConcurrentFetches,
    RpcError,
    ScannerError,
    ScannerTimeout,
    ServiceShutdown,
    SubscriptionClosed,
    SubscriptionLagged,
)


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (ServiceShutdown(), "Service is shutting down"),
        (ScannerTimeout(), "Operation timed out"),
        (InvalidEventCount(), "Event count must be greater than 0"),
        (InvalidMaxBlockRange(), "Max block range must be greater than 0"),
        (InvalidMaxConcurrentFetches(), "Max concurrent fetches must be greater than 0"),
        (SubscriptionClosed(), "Subscription closed"),
    ],
)
def test_fixed_messages(error, message):
    assert str(error) == message


def test_block_not_found_names_the_block():
    error = BlockNotFound(4)
    assert str(error) == "Block not found, Block Id: 4"
    assert error.block_id == 4


def test_block_exceeds_latest_formats_all_parts():
    error = BlockExceedsLatest("Start block", 12, 10)
    assert str(error) == "Start block 12 exceeds the latest block 10"
    assert (error.label, error.number, error.latest) == ("Start block", 12, 10)


def test_rpc_error_keeps_detail():
    cause = ConnectionError("connection reset")
    error = RpcError(cause)
    assert error.detail is cause
    assert str(error).startswith("RPC error: ")
    assert str(error).endswith("connection reset")


def test_lagged_keeps_skipped_count():
    error = SubscriptionLagged(7)
    assert error.skipped == 7
    assert "7" in str(error)


def test_block_not_found_is_a_scanner_error_with_payload():
    error = BlockNotFound(999)
    assert isinstance(error, ScannerError)
    assert error.block_id == 999
    assert str(error) == "Block not found, Block Id: 999"
    assert error.args != ()


def test_equal_when_same_kind_and_payload():
    assert BlockNotFound(4) == BlockNotFound(4)
    assert BlockNotFound(4) != BlockNotFound(5)
    assert ScannerTimeout() != SubscriptionClosed()
    assert len({ServiceShutdown(), ServiceShutdown(), ScannerTimeout()}) == 2


def test_comparison_with_other_objects_is_false():
    assert (ScannerTimeout() == "Operation timed out") is False