"""In-process event channel for audit emission.

Services put SystemEvents on an async queue and return immediately; a
background worker drains the queue and fans each event out to the
registered subscribers (audit writer, change feed). A slow or failing
subscriber therefore never blocks or fails the workflow that emitted.

Events recorded inside a request transaction are buffered on the session
and emitted only after it commits, so subscribers never see an action
that was rolled back, and a change notification always arrives after the
change is readable.

Usage:
    from caretrack.events import emit, subscribe

    subscribe(audit_on_event)  # at startup, receives every event
    await emit(SystemEvent(action=AuditAction.RUN_RETENTION_CHECK, target_entity="system"))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from caretrack.schemas.events import AuditAction, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# Session.info key holding events that wait for the transaction to commit
SESSION_EVENTS_KEY = "pending_events"

# ── Internal state ───────────────────────────────────────────────────

_subscribers: list[EventHandler] = []
_action_subscribers: dict[AuditAction, list[EventHandler]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker_task: asyncio.Task[None] | None = None


# ── Public API ───────────────────────────────────────────────────────


def subscribe(handler: EventHandler, actions: list[AuditAction] | None = None) -> None:
    """Register an event handler.

    Args:
        handler: Async function that accepts a SystemEvent.
        actions: If provided, handler only receives these actions.
                 If None, handler receives ALL events.
    """
    if actions is None:
        _subscribers.append(handler)
        logger.info("Registered global event subscriber: %s", handler.__name__)
    else:
        for action in actions:
            _action_subscribers.setdefault(action, []).append(handler)
        logger.info(
            "Registered event subscriber %s for actions: %s",
            handler.__name__,
            [a.value for a in actions],
        )


def unsubscribe(handler: EventHandler) -> None:
    """Remove a previously registered handler."""
    if handler in _subscribers:
        _subscribers.remove(handler)
    for handlers in _action_subscribers.values():
        if handler in handlers:
            handlers.remove(handler)


async def emit(event: SystemEvent) -> None:
    """Queue a SystemEvent for delivery to all subscribers.

    The queue is unbounded, so this never waits on subscribers.
    """
    global _queue
    if _queue is None:
        _queue = asyncio.Queue()
        _ensure_worker()

    _queue.put_nowait(event)
    logger.debug("Event emitted: %s (target=%s)", event.action.value, event.target_id)


# ── Transaction-bound events ─────────────────────────────────────────


def open_event_buffer(session: Any) -> None:
    """Hold events recorded on ``session`` until ``flush_event_buffer``."""
    session.info[SESSION_EVENTS_KEY] = []


def buffer_event(session: Any, event: SystemEvent) -> bool:
    """Attach ``event`` to the session's open buffer.

    Returns False when the session has no buffer, in which case the
    caller should emit right away.
    """
    if session is None or SESSION_EVENTS_KEY not in session.info:
        return False
    session.info[SESSION_EVENTS_KEY].append(event)
    return True


async def flush_event_buffer(session: Any) -> int:
    """Emit buffered events once their transaction has committed."""
    events: list[SystemEvent] = session.info.pop(SESSION_EVENTS_KEY, [])
    for event in events:
        await emit(event)
    return len(events)


def discard_event_buffer(session: Any) -> int:
    """Drop buffered events of a rolled-back transaction."""
    events: list[SystemEvent] = session.info.pop(SESSION_EVENTS_KEY, [])
    if events:
        logger.info(
            "Discarded %d events of a rolled-back transaction: %s",
            len(events),
            [e.action.value for e in events],
        )
    return len(events)


# ── Background worker ────────────────────────────────────────────────


def _ensure_worker() -> None:
    """Start the background event worker if not already running."""
    global _worker_task
    if _worker_task is None or _worker_task.done():
        _worker_task = asyncio.create_task(_event_worker())
        logger.info("Event worker started")


async def _event_worker() -> None:
    """Drain the queue and dispatch to subscribers until cancelled."""
    while _queue is not None:
        try:
            event = await _queue.get()
        except asyncio.CancelledError:
            logger.info("Event worker shutting down")
            break
        try:
            await _dispatch(event)
        except Exception:
            logger.exception("Error in event worker")
        finally:
            _queue.task_done()


async def _dispatch(event: SystemEvent) -> None:
    """Dispatch a single event to all matching subscribers."""
    handlers: list[EventHandler] = list(_subscribers)
    handlers.extend(_action_subscribers.get(event.action, []))

    if not handlers:
        return

    # Run all handlers concurrently; isolate failures
    results = await asyncio.gather(
        *[handler(event) for handler in handlers],
        return_exceptions=True,
    )
    for handler, result in zip(handlers, results, strict=True):
        if isinstance(result, Exception):
            logger.error(
                "Handler %s failed for %s: %s", handler.__name__, event.action.value, result
            )


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Initialize the event system. Call during FastAPI lifespan startup."""
    global _queue
    _queue = asyncio.Queue()
    _ensure_worker()
    logger.info(
        "Event system started with %d global + %d action subscribers",
        len(_subscribers),
        sum(len(v) for v in _action_subscribers.values()),
    )


async def stop_event_system() -> None:
    """Flush pending events, then stop the worker. Call during shutdown."""
    global _worker_task, _queue

    if _queue is not None and _worker_task is not None and not _worker_task.done():
        await _queue.join()

    if _worker_task is not None and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass

    _worker_task = None
    _queue = None
    logger.info("Event system stopped")
