"""
Error taxonomy for the reserve sentinel.

Cycle-fatal errors (UnsupportedProtocolType, ExternalReadUnavailable on a
protocol read) abort the whole evaluation. MalformedBatch aborts a ledger
write without mutating state. Missing reference data is NOT an error: it is
scored as a mild risk signal by the risk engine.
"""


class SentinelError(Exception):
    """Base class for all sentinel errors."""


class UnsupportedProtocolType(SentinelError, ValueError):
    """Raised when a protocol config names a type no adapter handles."""

    def __init__(self, protocol_type: str, name: str = None):
        self.protocol_type = protocol_type
        self.name = name
        target = f" for {name}" if name else ""
        super().__init__(f"Unsupported protocol type{target}: {protocol_type!r}")


class MalformedBatch(SentinelError, ValueError):
    """Raised when a per-protocol batch has inconsistent contents."""


class ExternalReadUnavailable(SentinelError):
    """Raised when a single point read against a chain fails."""

    def __init__(self, chain: str, target: str, reason: str):
        self.chain = chain
        self.target = target
        self.reason = reason
        super().__init__(f"Read failed on {chain} ({target}): {reason}")


class Unauthorized(SentinelError, PermissionError):
    """Raised when a caller identity lacks the capability for an operation."""

    def __init__(self, operation: str, caller: str):
        self.operation = operation
        self.caller = caller
        super().__init__(f"{caller or '<anonymous>'} is not authorized to {operation}")


class RegistrationError(SentinelError, ValueError):
    """Raised when a guard registration request is invalid."""
