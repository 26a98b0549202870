"""Connection lifecycle of a bridged call.

``transition`` is a pure function of (state, event kind) returning the next
state and the side effects the session has to perform, in order. The session
owns every resource; this module only decides what happens to them.
"""

from __future__ import annotations

from enum import Enum


class SessionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


class SessionEventKind(Enum):
    UPSTREAM_READY = "upstream_ready"
    UPSTREAM_TRANSCRIPT = "upstream_transcript"
    UPSTREAM_ERROR = "upstream_error"
    UPSTREAM_CLOSED = "upstream_closed"
    INBOUND_START = "inbound_start"
    INBOUND_MEDIA = "inbound_media"
    INBOUND_STOP = "inbound_stop"
    INBOUND_CLOSED = "inbound_closed"
    INBOUND_ERROR = "inbound_error"
    KEEPALIVE_TICK = "keepalive_tick"


class Effect(Enum):
    ENQUEUE_FRAME = "enqueue_frame"
    FORWARD_FRAME = "forward_frame"
    DISCARD_FRAME = "discard_frame"
    FLUSH_QUEUE = "flush_queue"
    DISCARD_QUEUE = "discard_queue"
    START_KEEPALIVE = "start_keepalive"
    STOP_KEEPALIVE = "stop_keepalive"
    SEND_KEEPALIVE = "send_keepalive"
    FINISH_UPSTREAM = "finish_upstream"
    CLOSE_INBOUND = "close_inbound"
    LOG_START = "log_start"
    EMIT_TRANSCRIPT = "emit_transcript"
    LOG_UPSTREAM_ERROR = "log_upstream_error"


Transition = tuple[SessionState, tuple[Effect, ...]]

_DRAIN_TRIGGERS = frozenset(
    {
        SessionEventKind.INBOUND_STOP,
        SessionEventKind.INBOUND_CLOSED,
        SessionEventKind.INBOUND_ERROR,
    }
)

_INFORMATIONAL = {
    SessionEventKind.INBOUND_START: (Effect.LOG_START,),
    SessionEventKind.UPSTREAM_TRANSCRIPT: (Effect.EMIT_TRANSCRIPT,),
    SessionEventKind.UPSTREAM_ERROR: (Effect.LOG_UPSTREAM_ERROR,),
}

_MEDIA_EFFECT = {
    SessionState.CONNECTING: Effect.ENQUEUE_FRAME,
    SessionState.OPEN: Effect.FORWARD_FRAME,
    SessionState.DRAINING: Effect.DISCARD_FRAME,
    SessionState.CLOSED: Effect.DISCARD_FRAME,
}


def transition(state: SessionState, event: SessionEventKind) -> Transition:
    if event is SessionEventKind.INBOUND_MEDIA:
        return state, (_MEDIA_EFFECT[state],)

    if state is SessionState.CLOSED:
        return state, ()

    if event is SessionEventKind.UPSTREAM_CLOSED:
        return SessionState.CLOSED, (
            Effect.STOP_KEEPALIVE,
            Effect.DISCARD_QUEUE,
            Effect.CLOSE_INBOUND,
        )

    if event in _INFORMATIONAL:
        return state, _INFORMATIONAL[event]

    if event is SessionEventKind.UPSTREAM_READY:
        if state is SessionState.CONNECTING:
            return SessionState.OPEN, (Effect.FLUSH_QUEUE, Effect.START_KEEPALIVE)
        return state, ()

    if event is SessionEventKind.KEEPALIVE_TICK:
        if state is SessionState.OPEN:
            return state, (Effect.SEND_KEEPALIVE,)
        return state, ()

    if event in _DRAIN_TRIGGERS:
        if state is SessionState.CONNECTING:
            return SessionState.DRAINING, (
                Effect.STOP_KEEPALIVE,
                Effect.DISCARD_QUEUE,
                Effect.FINISH_UPSTREAM,
            )
        if state is SessionState.OPEN:
            return SessionState.DRAINING, (Effect.STOP_KEEPALIVE, Effect.FINISH_UPSTREAM)
        return state, ()

    raise ValueError(f"Unhandled session event: {event!r}")
