from typing import Callable, List

from loguru import logger

from polling_request_client.clock import Cancellable, Clock


class ScheduledTimerSet:
    """A group of single-shot delayed callbacks that can be cancelled together.

    Cancelling only prevents future firings: a timer whose callback already
    ran (or is running) is unaffected.
    """

    def __init__(self, clock: Clock):
        self._clock = clock
        self._handles: List[Cancellable] = []
        self.logger = logger

    def schedule(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        handle: Cancellable

        def fire() -> None:
            self._discard(handle)
            callback()

        handle = self._clock.call_later(delay, fire)
        self._handles.append(handle)
        return handle

    def cancel_all(self) -> int:
        """Invalidate every held timer and empty the set; returns how many were cancelled"""
        handles, self._handles = self._handles, []
        for handle in handles:
            handle.cancel()
        if handles:
            self.logger.debug(f"Cancelled {len(handles)} pending timer(s)")
        return len(handles)

    def _discard(self, handle: Cancellable) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    def __len__(self) -> int:
        return len(self._handles)
