"""
Cancellation scopes for session-bound work.

A CancellationScope marks "the work of one login session". The session
allocates a new scope on every login and cancels it on logout; every queued
request keeps a reference to the scope it was created under and gives up as
soon as that scope is cancelled.

Example:
    >>> scope = CancellationScope()
    >>> unregister = scope.register(lambda: print("cancelled"))
    >>> scope.cancel()
    cancelled
    >>> scope.cancelled
    True
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from typing import ClassVar

from cordrest._errors import CancelledError

logger = logging.getLogger(__name__)

_generation = itertools.count(1)


class CancellationScope:
    """
    Thread-safe, one-shot cancellation signal.

    Cancelling a scope sets its event (waking every `wait()` call) and runs
    the registered callbacks once. Callbacks registered after cancellation run
    immediately. A callback that raises does not prevent the remaining ones
    from running; the first error is re-raised once all callbacks ran.

    Attributes:
        generation: Monotonically increasing id, useful in logs.
    """

    NONE: ClassVar[CancellationScope]

    def __init__(self) -> None:
        self.generation = next(_generation)
        self._event = threading.Event()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"CancellationScope(generation={self.generation}, {state})"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        """
        Cancel the scope and run all registered callbacks.

        Calling cancel() more than once is a no-op.

        Raises:
            Exception: The first exception raised by a callback, after every
                callback had its chance to run.
        """
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        logger.debug(f"{self!r}: running {len(callbacks)} cancellation callback(s).")
        first_error: Exception | None = None
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback to run when the scope is cancelled.

        Args:
            callback: Zero-argument callable.

        Returns:
            A function that unregisters the callback. Calling it after the
            scope was cancelled is harmless.
        """
        with self._lock:
            if not self._event.is_set():
                callback_id = self._next_id
                self._next_id += 1
                self._callbacks[callback_id] = callback

                def unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(callback_id, None)

                return unregister

        callback()
        return lambda: None

    def wait(self, timeout: float | None = None) -> bool:
        """
        Block until the scope is cancelled or `timeout` seconds elapse.

        Returns:
            True if the scope is cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise CancelledError if the scope has been cancelled."""
        if self._event.is_set():
            raise CancelledError(f"Cancellation scope {self.generation} was superseded.")


class _NoneScope(CancellationScope):
    """Scope used while no session is active. It can never be cancelled."""

    def __repr__(self) -> str:
        return "CancellationScope.NONE"

    def cancel(self) -> None:
        pass

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        return lambda: None


CancellationScope.NONE = _NoneScope()
