# Overview: Post-commit order change notifications for external cache owners.

"""
The engine owns no caches. Collaborators that do (calendar feeds, listing
pages) subscribe here and are called synchronously AFTER the change has been
committed. A failing listener is logged and skipped; it never undoes the
committed change and never blocks the remaining listeners.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

from ..time_utils import utcnow


@dataclass(frozen=True)
class OrderChangeEvent:
    order_id: int
    change: str  # created | lines_changed | deleted | status_changed
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    occurred_at: datetime = field(default_factory=utcnow)


OrderListener = Callable[[OrderChangeEvent], None]

_listeners: list[OrderListener] = []


def subscribe(listener: OrderListener) -> OrderListener:
    """Register a listener; returns it so this can be used as a decorator."""
    if listener not in _listeners:
        _listeners.append(listener)
    return listener


def unsubscribe(listener: OrderListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def publish(event: OrderChangeEvent) -> None:
    for listener in list(_listeners):
        try:
            listener(event)
        except Exception:
            current_app.logger.exception(
                "Order change listener %r failed for order %s (%s)",
                listener, event.order_id, event.change,
            )
