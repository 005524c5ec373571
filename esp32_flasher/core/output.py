"""Line-oriented output channel with subscription handles.

Producers call :meth:`OutputChannel.emit` from any thread.  Consumers attach
with :meth:`OutputChannel.subscribe` (additive) or
:meth:`OutputChannel.set_primary` (replaces the previous primary listener).
Lines emitted while nobody is listening are held in a bounded backlog and
handed to the next listener that attaches.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]

DEFAULT_BACKLOG = 500


class Subscription:
    """Handle returned when a listener attaches to an :class:`OutputChannel`."""

    def __init__(self, channel: "OutputChannel", listener: Listener):
        self._channel = channel
        self.listener = listener
        self.active = True

    def close(self) -> None:
        """Detach the listener.  Safe to call more than once."""
        if self.active:
            self._channel._remove(self)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OutputChannel:
    """Fan-out of emitted lines to registered listeners."""

    def __init__(self, backlog: int = DEFAULT_BACKLOG):
        self._lock = threading.RLock()
        self._primary: Optional[Subscription] = None
        self._subscriptions: List[Subscription] = []
        self._backlog: Deque[str] = deque(maxlen=backlog)

    def set_primary(self, listener: Listener) -> Subscription:
        """Register *listener* as the primary sink, replacing any previous one."""
        with self._lock:
            if self._primary is not None:
                self._primary.active = False
                self._primary = None
            subscription = Subscription(self, listener)
            self._primary = subscription
            pending = self._drain_backlog()
        self._deliver(subscription, pending)
        return subscription

    def subscribe(self, listener: Listener) -> Subscription:
        """Add *listener* alongside the existing ones."""
        with self._lock:
            subscription = Subscription(self, listener)
            self._subscriptions.append(subscription)
            pending = self._drain_backlog()
        self._deliver(subscription, pending)
        return subscription

    def emit(self, line: str) -> None:
        """Send *line* to every listener, or park it in the backlog."""
        with self._lock:
            targets = self._listeners()
            if not targets:
                self._backlog.append(line)
                return
        for subscription in targets:
            self._deliver(subscription, [line])

    @property
    def pending(self) -> List[str]:
        with self._lock:
            return list(self._backlog)

    # ------------------------------------------------------------------
    def _listeners(self) -> List[Subscription]:
        targets = [self._primary] if self._primary is not None else []
        return targets + list(self._subscriptions)

    def _drain_backlog(self) -> List[str]:
        pending = list(self._backlog)
        self._backlog.clear()
        return pending

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if self._primary is subscription:
                self._primary = None
            elif subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @staticmethod
    def _deliver(subscription: Subscription, lines: List[str]) -> None:
        for line in lines:
            if not subscription.active:
                return
            try:
                subscription.listener(line)
            except Exception:
                logger.warning("Output listener failed", exc_info=True)


__all__ = ["OutputChannel", "Subscription", "Listener"]
