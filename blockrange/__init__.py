"""Stream block number ranges from a chain with confirmations and reorg handling."""

__version__ = "0.8.0a0"

__all__ = [
    "errors",
    "messages",
    "reorg_handler",
    "ring_buffer",
    "scanner",
    "streaming",
    "sync_handler",
]