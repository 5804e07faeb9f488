"""Wall-clock budget shared by every vault call of one command."""
import time
from typing import Optional

from .errors import OperationTimeoutError

DEFAULT_TIMEOUT = 30.0


class Deadline:
    """
    Fixed time budget for a multi-call operation.

    The budget covers the whole operation, not each call. ``remaining()``
    raises once it is spent so callers fail instead of hanging.
    """

    def __init__(self, timeout: Optional[float] = DEFAULT_TIMEOUT, operation: str = "operation"):
        self.timeout = timeout
        self.operation = operation
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """
        Seconds left in the budget, or None when unbounded.

        Raises:
            OperationTimeoutError: If the budget is already spent
        """
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise self.timeout_error()
        return left

    def timeout_error(self) -> OperationTimeoutError:
        return OperationTimeoutError(f"{self.operation} timed out after {self.timeout:g}s")
