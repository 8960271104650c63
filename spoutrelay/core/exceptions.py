"""
Spout Relayer Exception Hierarchy

All exceptions inherit from RelayerError for easy catching.
"""


class RelayerError(Exception):
    """Base exception for all relayer errors"""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(RelayerError):
    """Raised when required configuration is missing or malformed"""
    pass


class EventDecodeError(RelayerError):
    """Raised when a log record cannot be decoded into an order event"""
    pass


class AddressDerivationError(RelayerError):
    """Raised when a program-derived address cannot be computed"""
    pass


class RpcError(RelayerError):
    """Raised when a ledger RPC call fails at transport or protocol level"""

    def __init__(
        self,
        message: str,
        method: str = None,
        code: int = None,
        details: dict = None,
        data: dict = None,
    ):
        merged = dict(details or {})
        if method:
            merged.setdefault("method", method)
        if code is not None:
            merged.setdefault("code", code)
        super().__init__(message, merged)
        self.method = method
        self.code = code
        # Preflight simulation result: "logs" and "err"
        self.data = data if isinstance(data, dict) else {}


class TransactionError(RelayerError):
    """
    Raised when a submitted transaction is rejected, fails, or expires.

    unconfirmed is True when the transaction was handed to the node and
    its outcome is unknown: it may still land, or may already have.
    """

    def __init__(
        self,
        message: str,
        signature: str = None,
        logs: list = None,
        details: dict = None,
        unconfirmed: bool = False,
    ):
        merged = dict(details or {})
        if signature:
            merged.setdefault("signature", signature)
        super().__init__(message, merged)
        self.signature = signature
        self.logs = list(logs or [])
        self.unconfirmed = unconfirmed


class SettlementError(RelayerError):
    """Raised when a settlement step fails"""

    def __init__(self, message: str, phase: str = None, details: dict = None):
        merged = dict(details or {})
        if phase:
            merged.setdefault("phase", phase)
        super().__init__(message, merged)
        self.phase = phase


class JournalError(RelayerError):
    """Raised when settlement journal operations fail"""
    pass
