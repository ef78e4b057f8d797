"""
Cooperative cancellation for reconciliation runs.
"""

import threading

from .exceptions import OperationCancelledError


class CancellationToken:
    """
    Flag shared between the caller and a running reconciliation.

    The orchestrator polls the token between units of work; cancelling never
    interrupts a backend call that is already in flight.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def throw_if_cancelled(self) -> None:
        """
        Raise if cancellation has been requested.

        Raises:
            OperationCancelledError: If :meth:`cancel` was called
        """
        if self._event.is_set():
            raise OperationCancelledError()


def check_cancelled(token) -> None:
    """Poll an optional token."""
    if token is not None:
        token.throw_if_cancelled()
