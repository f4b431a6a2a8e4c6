from __future__ import annotations


class MintWatchError(Exception):
    """Base class for everything mintwatch raises on purpose."""


class TransportError(MintWatchError):
    """Network, timeout or JSON-RPC failure. Retried on the next tick / reconnect."""


class DecodeError(MintWatchError):
    """A log entry does not have the Transfer(address,address,uint256) shape."""


class InvalidCursorError(MintWatchError):
    """Attempted cursor rewind or use of an uninitialized cursor."""


class SinkError(MintWatchError):
    """The notification sink failed to deliver an event."""


class ConfigError(MintWatchError):
    """Missing or invalid configuration; the only error that blocks startup."""
