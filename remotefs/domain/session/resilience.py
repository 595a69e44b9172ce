"""
Timeouts, retry and error classification for remote calls
"""
import errno
import socket
import time
from concurrent.futures import Executor, TimeoutError as FuturesTimeoutError
from typing import Callable, Optional, TypeVar

import paramiko

from ...core.constants import RETRYABLE_MESSAGE_PATTERNS
from ...core.exceptions import (
    AuthenticationError,
    ChecksumMismatchError,
    CommandError,
    ConfigError,
    NotFoundError,
    OperationTimeoutError,
    PermissionDeniedError,
    RemoteError,
    RetryExhaustedError,
    TransferCancelledError,
)
from ...core.logging import get_logger
from .models import RetryPolicy

logger = get_logger(__name__)

T = TypeVar("T")

_TIMEOUT_HINTS = {
    OperationTimeoutError.INIT: "the SFTP subsystem may be disabled or the server overloaded; increase init_timeout",
    OperationTimeoutError.OPERATION: "the server or network may be slow; increase operation_timeout",
    OperationTimeoutError.PATH_EXPAND: "increase path_expand_timeout",
}

_NON_RETRYABLE = (
    NotFoundError,
    PermissionDeniedError,
    AuthenticationError,
    ChecksumMismatchError,
    TransferCancelledError,
    ConfigError,
    CommandError,
    FileNotFoundError,
    PermissionError,
)

_TRANSIENT = (
    OperationTimeoutError,
    socket.timeout,
    socket.gaierror,
    TimeoutError,
    ConnectionResetError,
    ConnectionRefusedError,
    ConnectionAbortedError,
    BrokenPipeError,
    EOFError,
)

_TRANSPORT_FAILURES = (
    EOFError,
    paramiko.SSHException,
    ConnectionResetError,
    ConnectionAbortedError,
    BrokenPipeError,
)


def run_with_timeout(
    executor: Executor,
    fn: Callable[[], T],
    timeout: float,
    description: str,
    phase: str = OperationTimeoutError.OPERATION,
    hint: Optional[str] = None,
) -> T:
    """
    Run ``fn`` on ``executor`` and wait at most ``timeout`` seconds.

    The call keeps running in its worker after a timeout; callers that
    cannot trust the channel afterwards should drop it.

    Raises:
        OperationTimeoutError: With ``phase`` set, when the wait expires;
            ``hint`` replaces the phase's default hint
    """
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeoutError:
        if future.done():
            # fn raised its own timeout
            raise
        future.cancel()
        raise OperationTimeoutError(
            f"Timed out after {timeout:g}s during {description}",
            phase=phase,
            hint=hint or _TIMEOUT_HINTS.get(phase),
        )


def is_retryable(error: BaseException) -> bool:
    """Transient network failures are retryable; everything else is not"""
    if isinstance(error, _NON_RETRYABLE):
        return False
    if isinstance(error, paramiko.AuthenticationException):
        return False
    if isinstance(error, _TRANSIENT) or isinstance(error, paramiko.SSHException):
        return True
    if isinstance(error, RetryExhaustedError):
        return False
    message = str(error).lower()
    return any(pattern in message for pattern in RETRYABLE_MESSAGE_PATTERNS)


def is_transport_failure(error: BaseException) -> bool:
    """Errors after which the SFTP channel cannot be trusted"""
    if isinstance(error, _TRANSPORT_FAILURES):
        return True
    return "socket is closed" in str(error).lower()


def translate_error(error: BaseException, path: Optional[str] = None) -> BaseException:
    """Map SFTP IOErrors onto the typed exception hierarchy"""
    if isinstance(error, RemoteError) or not isinstance(error, OSError):
        return error
    target = path or getattr(error, "filename", None) or "remote path"
    if error.errno == errno.ENOENT:
        return NotFoundError(f"No such file or directory: {target}")
    if error.errno in (errno.EACCES, errno.EPERM):
        return PermissionDeniedError(
            f"Permission denied: {target}",
            hint="check ownership and mode of the path on the server",
        )
    return error


def retry_call(
    fn: Callable[[], T],
    policy: RetryPolicy,
    operation: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` with exponential backoff on transient failures.

    Non-retryable errors propagate on the first occurrence.

    Raises:
        RetryExhaustedError: When every attempt failed transiently
    """
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if not is_retryable(e):
                raise
            attempt += 1
            if attempt > policy.max_retries:
                logger.error(f"{operation} failed after {attempt} attempts: {e}")
                raise RetryExhaustedError(operation, attempt, e) from e
            delay = policy.delay_for(attempt)
            logger.warning(f"{operation} failed ({e}), retry {attempt}/{policy.max_retries} in {delay:.1f}s")
            sleep(delay)
