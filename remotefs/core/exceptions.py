"""
Unified exception definitions
"""
from typing import Optional


class RemoteError(Exception):
    """Base exception class"""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class ConfigError(RemoteError):
    """Configuration error"""
    pass


class ConnectionError(RemoteError):
    """Connection error"""
    pass


class AuthenticationError(ConnectionError):
    """Missing or rejected credentials"""
    pass


class OperationTimeoutError(RemoteError):
    """
    Remote call did not finish in time.

    ``phase`` tells initialization timeouts apart from per-call ones:
    ``init``, ``operation`` or ``path_expand``.
    """

    INIT = "init"
    OPERATION = "operation"
    PATH_EXPAND = "path_expand"

    def __init__(self, message: str, phase: str = OPERATION, hint: Optional[str] = None):
        super().__init__(message, hint)
        self.phase = phase


class PermissionDeniedError(RemoteError):
    """Permission denied on the remote side"""
    pass


class NotFoundError(RemoteError):
    """Remote path does not exist"""
    pass


class FilenameEncodingError(RemoteError):
    """Remote filename cannot be decoded with the host's filename encoding"""
    pass


class ChecksumMismatchError(RemoteError):
    """Transferred data does not match the source digest"""

    def __init__(self, path: str, expected: str, actual: str):
        super().__init__(
            f"Checksum mismatch for {path}: expected {expected}, got {actual}",
            hint="the partial file was kept; retry the transfer or restart it from scratch",
        )
        self.path = path
        self.expected = expected
        self.actual = actual


class RetryExhaustedError(RemoteError):
    """Transient failure persisted after all retry attempts"""

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            hint="check network connectivity or increase retry.max_retries",
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


class TransferCancelledError(RemoteError):
    """Transfer aborted by its abort signal"""
    pass


class TransferError(RemoteError):
    """Transfer error"""
    pass


class CommandError(RemoteError):
    """Remote command exited with a non-zero status"""

    def __init__(self, command: str, result):
        detail = (result.stderr or result.stdout or "").strip()
        super().__init__(f"Command failed with exit code {result.exit_code}: {command}: {detail}")
        self.command = command
        self.result = result


class SyncError(RemoteError):
    """Sync error"""
    pass
