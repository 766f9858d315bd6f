"""Exception hierarchy shared across the chain, wallet and ledger layers."""

from typing import Any, Optional


class CleenSwapError(Exception):
    """Base class for all errors raised by cleenswap."""

    pass


class RpcError(CleenSwapError):
    """A JSON-RPC call did not produce a usable result."""

    def __init__(self, message: str, method: Optional[str] = None):
        self.method = method
        super().__init__(message)


class RpcTransportError(RpcError):
    """Connection failure, non-2xx status or a body that is not JSON."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(message, method)


class RpcProtocolError(RpcError):
    """The node answered with a JSON-RPC error payload."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        code: Optional[int] = None,
        data: Any = None,
    ):
        self.code = code
        self.data = data
        super().__init__(message, method)


class RpcTimeoutError(RpcError):
    """A caller-imposed deadline expired.

    The request may still have completed on the server.
    """

    pass


class DecodingError(CleenSwapError, ValueError):
    """Malformed ABI input or response data."""

    pass


class WalletError(CleenSwapError):
    """Base class for wallet provider failures."""

    pass


class WalletUnavailableError(WalletError):
    """No wallet provider is available to authorize a transfer."""

    pass


class TransferRejectedError(WalletError):
    """The user or the provider refused the transfer."""

    def __init__(self, message: str, code: Optional[int] = None):
        self.code = code
        super().__init__(message)


class LedgerWriteError(CleenSwapError):
    """The off-chain ledger could not be updated."""

    pass


class ExchangeInProgressError(CleenSwapError):
    """Another exchange for the same session has not finished yet."""

    pass
